"""
Job Status Reconciler.

Merges job-backend status into the session's scenes. One cooperative asyncio
task per session polls while any scene has a queued/generating image or
video; the loop runs its passes strictly one after another, so two passes for
the same session never overlap.
"""

import os
import time
import asyncio
import logging
from collections import defaultdict
from typing import Optional

from .. import metrics
from . import registry
from .errors import PollError, SessionNotFound
from .models import (
    INTERRUPTED_JOB_MESSAGE,
    GenerationJob,
    GenerationState,
    JobStatus,
    MediaKind,
    Scene,
    Session,
)
from .store import SessionStore

logger = logging.getLogger(__name__)

SCENE_POLL_INTERVAL = float(os.getenv("SCENE_POLL_INTERVAL", "2.5"))
MAX_POLL_SECONDS = float(os.getenv("MAX_POLL_SECONDS", "1800"))


def _state_for(job: GenerationJob) -> GenerationState:
    if job.status == JobStatus.COMPLETED:
        return GenerationState(status=JobStatus.COMPLETED, progress=100, job_id=job.id)
    if job.status == JobStatus.FAILED:
        return GenerationState(
            status=JobStatus.FAILED,
            progress=max(0, min(100, job.progress)),
            error=job.error_message or "Generation failed",
            job_id=job.id,
        )
    return GenerationState(status=job.status, progress=max(0, min(100, job.progress)), job_id=job.id)


def merge_jobs(scene: Scene, jobs_by_kind: dict[MediaKind, list[GenerationJob]]) -> Scene:
    """
    Fold one scene's jobs (oldest → newest per kind) into the scene.

    Every completed job contributes its URL once; the newest job alone
    decides the transient state. A pending state whose job has no row yet
    belongs to a submission still in flight and is left as it is.
    """
    for kind, jobs in jobs_by_kind.items():
        for job in jobs:
            if job.status == JobStatus.COMPLETED and job.result_url \
                    and not registry.contains(scene, kind, job.result_url):
                scene = registry.append(scene, kind, job.result_url)
        current = registry.state_of(scene, kind)
        if current.pending and current.job_id and all(job.id != current.job_id for job in jobs):
            continue
        scene = registry.set_state(scene, kind, _state_for(jobs[-1]))
    return scene


def release_untracked(scene: Scene, jobs_by_kind: dict[MediaKind, list[GenerationJob]]) -> Scene:
    """
    A pending state with no job id and no job rows was left by an older
    writer that died mid-generation; nothing will ever complete it.
    """
    for kind in MediaKind:
        state = registry.state_of(scene, kind)
        if state.pending and state.job_id is None and not jobs_by_kind.get(kind):
            scene = registry.set_state(
                scene, kind, GenerationState(status=JobStatus.FAILED, error=INTERRUPTED_JOB_MESSAGE)
            )
    return scene


def group_jobs(
    scenes: list[Scene], jobs: list[GenerationJob]
) -> tuple[dict[int, dict[MediaKind, list[GenerationJob]]], list[GenerationJob]]:
    """
    Map jobs to scene positions by scene id. Rows written before jobs carried
    a scene id fall back to the position they were submitted for.
    Returns (grouped by position, jobs matching no scene).
    """
    positions = {scene.id: i for i, scene in enumerate(scenes)}
    grouped: dict[int, dict[MediaKind, list[GenerationJob]]] = defaultdict(lambda: defaultdict(list))
    unmatched = []
    for job in jobs:
        if job.scene_id is not None:
            position = positions.get(job.scene_id)
        elif 0 <= job.scene_index < len(scenes):
            position = job.scene_index
        else:
            position = None
        if position is None:
            unmatched.append(job)
            continue
        grouped[position][MediaKind(job.kind)].append(job)
    return grouped, unmatched


class JobReconciler:
    def __init__(self, store: SessionStore, jobs, interval: Optional[float] = None):
        self._store = store
        self._jobs = jobs
        self._interval = SCENE_POLL_INTERVAL if interval is None else interval
        self._tasks: dict[str, asyncio.Task] = {}

    def is_polling(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def ensure_polling(self, session_id: str):
        if self.is_polling(session_id):
            return
        task = asyncio.create_task(self._poll_loop(session_id))
        self._tasks[session_id] = task
        logger.info(f"Session {session_id}: polling started")

    async def stop(self, session_id: str):
        task = self._tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info(f"Session {session_id}: polling stopped")

    async def shutdown(self):
        for session_id in list(self._tasks):
            await self.stop(session_id)

    async def wait(self, session_id: str):
        """Block until the session's poll loop exits on its own."""
        task = self._tasks.get(session_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def _fetch(self, session_id: str) -> list[GenerationJob]:
        try:
            return await self._jobs.status(session_id)
        except Exception as e:
            raise PollError(f"Job status fetch failed for session {session_id}: {e}") from e

    async def reconcile_once(self, session_id: str) -> bool:
        """
        One pass. Returns False when the status fetch failed; in that case
        nothing was written and the next pass simply tries again.
        """
        try:
            jobs = await self._fetch(session_id)
        except PollError as e:
            logger.warning(str(e))
            metrics.inc_counter("errors.poll")
            metrics.record_error("reconcile", "PollError", str(e), session_id)
            return False

        unmatched: list[GenerationJob] = []

        def apply(session: Session) -> Session:
            grouped, missing = group_jobs(session.scenes, jobs)
            unmatched[:] = missing
            scenes = [
                release_untracked(merge_jobs(scene, grouped[i]) if i in grouped else scene, grouped.get(i, {}))
                for i, scene in enumerate(session.scenes)
            ]
            return session.model_copy(update={"scenes": scenes})

        await self._store.mutate(session_id, apply)
        if unmatched:
            logger.warning(f"Session {session_id}: ignoring {len(unmatched)} job(s) for unknown scenes")

        metrics.inc_counter("reconcile.passes")
        return True

    async def _poll_loop(self, session_id: str):
        started = time.monotonic()
        try:
            while True:
                await self.reconcile_once(session_id)
                session = await self._store.get(session_id)
                if not session.has_pending_jobs:
                    logger.info(f"Session {session_id}: no pending jobs, polling finished")
                    return
                if time.monotonic() - started > MAX_POLL_SECONDS:
                    logger.warning(f"Session {session_id}: polling gave up after {int(MAX_POLL_SECONDS)}s")
                    return
                await asyncio.sleep(self._interval)
        except SessionNotFound:
            logger.info(f"Session {session_id}: deleted while polling")
        finally:
            if self._tasks.get(session_id) is asyncio.current_task():
                del self._tasks[session_id]
