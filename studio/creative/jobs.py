"""
Scene generation job backend.

Owns GenerationJob records and the background runners that fulfil them:

  image job → Gemini image model → R2 upload → completed(result_url)
  video job → Kie.ai Veo REFERENCE_2_VIDEO → poll provider → completed(result_url)

The orchestrator never awaits a runner. It submits, gets a job id back, and
later reads status(session_id) through the reconciler. Video submissions are
made to the provider inside submit() so a rejected request surfaces to the
caller as a DispatchFailure instead of a job that fails later.
"""

import os
import time
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from .. import kie, metrics
from .errors import DispatchFailure, JobFailed
from .imagery import ImageGenerator
from .models import INTERRUPTED_JOB_MESSAGE, PENDING_JOB_STATUSES, GenerationJob, JobStatus, MediaKind
from .store import _get_service_client, supabase_configured

logger = logging.getLogger(__name__)

JOBS_TABLE = "scene_generation_jobs"
KIE_POLL_INTERVAL = float(os.getenv("KIE_POLL_INTERVAL", "5"))
VIDEO_JOB_TIMEOUT = float(os.getenv("VIDEO_JOB_TIMEOUT", "900"))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _age_seconds(timestamp: Optional[str]) -> Optional[float]:
    if not timestamp:
        return None
    try:
        created = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - created).total_seconds()


# ── Job records ──────────────────────────────────────────────────────────────

class InMemoryJobStore:
    def __init__(self):
        self._jobs: dict[str, GenerationJob] = {}

    async def insert(self, job: GenerationJob):
        self._jobs[job.id] = job

    async def update(self, job_id: str, fields: dict) -> Optional[GenerationJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        job = job.model_copy(update={**fields, "updated_at": _now_iso()})
        self._jobs[job_id] = job
        return job

    async def list(self, session_id: str) -> list[GenerationJob]:
        jobs = [j for j in self._jobs.values() if j.session_id == session_id]
        return sorted(jobs, key=lambda j: j.created_at or "")

    async def delete_session(self, session_id: str):
        for job_id in [j.id for j in self._jobs.values() if j.session_id == session_id]:
            del self._jobs[job_id]


class SupabaseJobStore:
    def __init__(self, client=None):
        self._client = client

    @property
    def sb(self):
        return self._client or _get_service_client()

    async def insert(self, job: GenerationJob):
        self.sb.table(JOBS_TABLE).insert(job.model_dump(mode="json")).execute()

    async def update(self, job_id: str, fields: dict) -> Optional[GenerationJob]:
        payload = {
            k: (v.value if isinstance(v, (JobStatus, MediaKind)) else v)
            for k, v in fields.items()
        }
        payload["updated_at"] = _now_iso()
        result = self.sb.table(JOBS_TABLE).update(payload).eq("id", job_id).execute()
        return GenerationJob(**result.data[0]) if result.data else None

    async def list(self, session_id: str) -> list[GenerationJob]:
        result = (
            self.sb.table(JOBS_TABLE)
            .select("*")
            .eq("session_id", session_id)
            .order("created_at")
            .execute()
        )
        return [GenerationJob(**row) for row in result.data]

    async def delete_session(self, session_id: str):
        self.sb.table(JOBS_TABLE).delete().eq("session_id", session_id).execute()


# ── Video provider ───────────────────────────────────────────────────────────

class KieVideoProvider:
    """Blocking calls; SceneJobService runs them in a worker thread."""

    def submit(self, prompt: str, image_url: str) -> str:
        return kie.submit_scene_video(prompt, image_url)

    def status(self, task_id: str) -> kie.ProviderStatus:
        return kie.parse_task_status(kie.get_task_status(task_id))


# ═════════════════════════════════════════════════════════════════════════════
# Scene Job Service
# ═════════════════════════════════════════════════════════════════════════════

class SceneJobService:
    """
    Usage:
        jobs = SceneJobService()
        job_id = await jobs.submit(session_id, 0, MediaKind.VIDEO, prompt, image_url=url)
        ...
        for job in await jobs.status(session_id):
            ...
    """

    def __init__(
        self,
        store=None,
        images: Optional[ImageGenerator] = None,
        videos=None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        if store is None:
            store = SupabaseJobStore() if supabase_configured() else InMemoryJobStore()
        self._store = store
        self._images = images or ImageGenerator()
        self._videos = videos or KieVideoProvider()
        self._poll_interval = KIE_POLL_INTERVAL if poll_interval is None else poll_interval
        self._timeout = VIDEO_JOB_TIMEOUT if timeout is None else timeout
        self._tasks: dict[str, tuple[str, asyncio.Task]] = {}

    async def submit(
        self,
        session_id: str,
        scene_index: int,
        kind: MediaKind,
        prompt: str,
        image_url: Optional[str] = None,
        reference_url: Optional[str] = None,
        scene_id: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> str:
        kind = MediaKind(kind)
        now = _now_iso()
        job = GenerationJob(
            id=job_id or str(uuid4()),
            session_id=session_id,
            scene_index=scene_index,
            scene_id=scene_id,
            kind=kind,
            status=JobStatus.QUEUED,
            prompt=prompt,
            created_at=now,
            updated_at=now,
        )

        if kind == MediaKind.VIDEO:
            if not image_url:
                raise DispatchFailure("Video jobs need a scene image")
            try:
                task_id = await asyncio.to_thread(self._videos.submit, prompt, image_url)
            except Exception as e:
                logger.error(f"Video submission failed for session {session_id} scene {scene_index}: {e}")
                raise DispatchFailure(f"Video submission failed: {e}") from e
            job = job.model_copy(update={"provider_task_id": task_id})

        await self._store.insert(job)
        logger.info(f"[{job.id}] {kind.value} job queued for session {session_id} scene {scene_index}")

        task = asyncio.create_task(self._run(job, reference_url))
        self._tasks[job.id] = (session_id, task)
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return job.id

    async def status(self, session_id: str) -> list[GenerationJob]:
        jobs = await self._store.list(session_id)
        return [await self._fail_if_orphaned(job) for job in jobs]

    async def _fail_if_orphaned(self, job: GenerationJob) -> GenerationJob:
        """
        A pending row with no runner in this process (left over from a
        restart) will never move again. Once it is older than the job timeout
        it is marked failed so the scene can be regenerated.
        """
        if job.status not in PENDING_JOB_STATUSES or job.id in self._tasks:
            return job
        age = _age_seconds(job.created_at)
        if age is None or age <= self._timeout:
            return job

        logger.warning(f"[{job.id}] {job.kind.value} job has no runner after {int(age)}s, marking failed")
        metrics.inc_counter("jobs.orphaned")
        fields = {"status": JobStatus.FAILED, "error_message": INTERRUPTED_JOB_MESSAGE}
        updated = await self._store.update(job.id, fields)
        return updated or job.model_copy(update=fields)

    async def forget(self, session_id: str):
        """Cancel runners and drop every job record for a session."""
        tasks = [task for sid, task in self._tasks.values() if sid == session_id]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._store.delete_session(session_id)
        if tasks:
            logger.info(f"Session {session_id}: cancelled {len(tasks)} running job(s)")

    async def drain(self):
        """Wait for every running job to finish."""
        while self._tasks:
            await asyncio.gather(*[task for _, task in list(self._tasks.values())], return_exceptions=True)

    async def shutdown(self):
        tasks = [task for _, task in self._tasks.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── Runners ──────────────────────────────────────────────────────────

    async def _update(self, job: GenerationJob, status: JobStatus, progress: int, **fields):
        await self._store.update(job.id, {"status": status, "progress": progress, **fields})
        logger.info(f"[{job.id}] {status.value} ({progress}%)")

    async def _run(self, job: GenerationJob, reference_url: Optional[str]):
        started = time.time()
        try:
            if job.kind == MediaKind.IMAGE:
                await self._update(job, JobStatus.GENERATING, 10)
                url = await self._images.scene_image(job.session_id, job.scene_index, job.prompt, reference_url)
            else:
                url = await self._poll_video(job)

            await self._update(job, JobStatus.COMPLETED, 100, result_url=url)
            metrics.inc_counter(f"jobs.{job.kind.value}.completed")
            metrics.record_latency(f"job.{job.kind.value}", (time.time() - started) * 1000)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{job.id}] {job.kind.value} job failed: {e}")
            metrics.inc_counter(f"jobs.{job.kind.value}.failed")
            metrics.record_error(f"job.{job.kind.value}", type(e).__name__, str(e), job.session_id)
            await self._store.update(job.id, {"status": JobStatus.FAILED, "error_message": str(e)})

    async def _poll_video(self, job: GenerationJob) -> str:
        deadline = time.monotonic() + self._timeout
        last = (JobStatus.QUEUED, 0)

        while time.monotonic() < deadline:
            try:
                result = await asyncio.to_thread(self._videos.status, job.provider_task_id)
            except Exception as e:
                # provider hiccup; the next poll decides
                logger.warning(f"[{job.id}] provider poll failed: {e}")
                metrics.inc_counter("errors.provider_poll")
                await asyncio.sleep(self._poll_interval)
                continue

            if result.status == "completed":
                return result.video_url
            if result.status == "failed":
                raise JobFailed(result.error or "Video generation failed")

            current = (JobStatus(result.status), result.progress)
            if current != last:
                await self._update(job, *current)
                last = current
            await asyncio.sleep(self._poll_interval)

        raise JobFailed(f"Video generation timed out after {int(self._timeout)}s")
