"""
Tests for the scene generation job backend.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from studio import metrics
from studio.kie import ProviderStatus
from studio.creative.errors import DispatchFailure
from studio.creative.jobs import InMemoryJobStore, SceneJobService
from studio.creative.models import INTERRUPTED_JOB_MESSAGE, GenerationJob, JobStatus, MediaKind


class TestSceneJobService:
    @pytest.mark.asyncio
    async def test_image_job_completes(self, job_service, images):
        job_id = await job_service.submit("s1", 0, MediaKind.IMAGE, "Creator at camera",
                                          reference_url="https://cdn.test/p1.png")
        await job_service.drain()

        [job] = await job_service.status("s1")
        assert job.id == job_id
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result_url.startswith("https://cdn.test/s1/scene-1")
        assert images.calls == [("scene_image", 0, "https://cdn.test/p1.png")]

    @pytest.mark.asyncio
    async def test_image_job_failure_recorded(self, job_service, images):
        images.fail_scenes = True
        await job_service.submit("s1", 2, MediaKind.IMAGE, "prompt")
        await job_service.drain()

        [job] = await job_service.status("s1")
        assert job.status == JobStatus.FAILED
        assert "refused" in job.error_message

    @pytest.mark.asyncio
    async def test_video_job_polls_until_complete(self, job_service, videos):
        videos.script = [
            ProviderStatus("queued", 0),
            RuntimeError("connection reset"),
            ProviderStatus("generating", 40),
        ]
        await job_service.submit("s1", 1, MediaKind.VIDEO, "prompt", image_url="https://cdn.test/img.png")
        await job_service.drain()

        [job] = await job_service.status("s1")
        assert job.status == JobStatus.COMPLETED
        assert job.provider_task_id == "task-1"
        assert job.result_url == "https://cdn.test/videos/task-1.mp4"

    @pytest.mark.asyncio
    async def test_video_provider_failure(self, job_service, videos):
        videos.final = ProviderStatus("failed", 20, error="content policy")
        await job_service.submit("s1", 0, MediaKind.VIDEO, "prompt", image_url="https://cdn.test/img.png")
        await job_service.drain()

        [job] = await job_service.status("s1")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "content policy"

    @pytest.mark.asyncio
    async def test_rejected_submission_raises_and_stores_nothing(self, job_service, videos):
        videos.fail_submit_for = {"*"}
        with pytest.raises(DispatchFailure):
            await job_service.submit("s1", 0, MediaKind.VIDEO, "prompt", image_url="https://cdn.test/img.png")
        assert await job_service.status("s1") == []

    @pytest.mark.asyncio
    async def test_video_without_image_rejected(self, job_service):
        with pytest.raises(DispatchFailure):
            await job_service.submit("s1", 0, MediaKind.VIDEO, "prompt")

    @pytest.mark.asyncio
    async def test_video_timeout(self, images, videos):
        videos.final = ProviderStatus("generating", 50)
        service = SceneJobService(
            store=InMemoryJobStore(), images=images, videos=videos, poll_interval=0.01, timeout=0.05,
        )
        await service.submit("s1", 0, MediaKind.VIDEO, "prompt", image_url="https://cdn.test/img.png")
        await service.drain()

        [job] = await service.status("s1")
        assert job.status == JobStatus.FAILED
        assert "timed out" in job.error_message

    @pytest.mark.asyncio
    async def test_forget_cancels_and_deletes(self, job_service, videos):
        videos.final = ProviderStatus("generating", 10)
        await job_service.submit("s1", 0, MediaKind.VIDEO, "prompt", image_url="https://cdn.test/img.png")
        await job_service.submit("s2", 0, MediaKind.IMAGE, "prompt")

        await job_service.forget("s1")
        await job_service.drain()

        assert await job_service.status("s1") == []
        assert len(await job_service.status("s2")) == 1

    @pytest.mark.asyncio
    async def test_caller_chosen_id_and_scene_id_stored(self, job_service):
        job_id = await job_service.submit("s1", 1, MediaKind.IMAGE, "prompt", scene_id=7, job_id="job-abc")
        await job_service.drain()

        [job] = await job_service.status("s1")
        assert job_id == job.id == "job-abc"
        assert job.scene_id == 7
        assert job.scene_index == 1


class _HeldImages:
    def __init__(self):
        self.release = asyncio.Event()

    async def scene_image(self, session_id, scene_index, visuals, reference_url):
        await self.release.wait()
        return "https://cdn.test/held.png"


def _pending_row(job_id, age):
    return GenerationJob(
        id=job_id,
        session_id="s1",
        scene_index=0,
        scene_id=1,
        kind=MediaKind.VIDEO,
        status=JobStatus.GENERATING,
        progress=40,
        created_at=(datetime.now(timezone.utc) - age).isoformat(),
    )


class TestInterruptedJobs:
    @pytest.mark.asyncio
    async def test_stale_row_without_runner_marked_failed(self, images, videos):
        store = InMemoryJobStore()
        await store.insert(_pending_row("j-stale", timedelta(hours=1)))
        service = SceneJobService(store=store, images=images, videos=videos, poll_interval=0.01, timeout=60)

        [job] = await service.status("s1")

        assert job.status == JobStatus.FAILED
        assert job.error_message == INTERRUPTED_JOB_MESSAGE
        assert (await store.list("s1"))[0].status == JobStatus.FAILED
        assert metrics.get_counter("jobs.orphaned") == 1

    @pytest.mark.asyncio
    async def test_recent_row_left_pending(self, images, videos):
        store = InMemoryJobStore()
        await store.insert(_pending_row("j-recent", timedelta(seconds=5)))
        service = SceneJobService(store=store, images=images, videos=videos, poll_interval=0.01, timeout=60)

        [job] = await service.status("s1")
        assert job.status == JobStatus.GENERATING

    @pytest.mark.asyncio
    async def test_row_with_live_runner_left_pending(self, videos):
        held = _HeldImages()
        service = SceneJobService(
            store=InMemoryJobStore(), images=held, videos=videos, poll_interval=0.01, timeout=-1,
        )
        await service.submit("s1", 0, MediaKind.IMAGE, "prompt")
        await asyncio.sleep(0)

        [job] = await service.status("s1")
        assert job.status in (JobStatus.QUEUED, JobStatus.GENERATING)

        held.release.set()
        await service.drain()
        [job] = await service.status("s1")
        assert job.status == JobStatus.COMPLETED
        assert job.result_url == "https://cdn.test/held.png"
