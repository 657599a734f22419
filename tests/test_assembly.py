"""
Tests for final video assembly.
"""

import asyncio
import threading

import pytest

from studio.creative import stitcher as stitch_module
from studio.creative.assembly import VideoAssemblyService, build_inputs
from studio.creative.errors import StitchFailed, ValidationError
from studio.creative.models import AssemblyInput, AssemblyStage, SessionStatus, TransitionType
from studio.creative.normalize import normalize_session_row
from studio.creative.store import InMemorySessionStore


def _row(**overrides):
    row = {
        "id": "s1",
        "user_id": "u1",
        "product_id": "p1",
        "current_step": 3,
        "furthest_step": 3,
        "scenes": [
            {"id": 1, "video_url": "https://cdn.test/v1.mp4", "transition_type": "wipeleft", "duration": 3},
            {"id": 2, "video_url": "https://cdn.test/v2.mp4", "included": False},
            {"id": 3, "prompt": "no video yet"},
            {"id": 4, "video_url": "https://cdn.test/v4.mp4", "transition_type": "dissolve"},
        ],
    }
    row.update(overrides)
    return row


@pytest.fixture
def asm_store():
    store = InMemorySessionStore()
    store.put_row(_row())
    return store


@pytest.fixture
def assembly(asm_store, progress_store, stitcher):
    return VideoAssemblyService(asm_store, progress_store, stitcher)


class TestBuildInputs:
    def test_included_scenes_with_video_in_order(self):
        inputs = build_inputs(normalize_session_row(_row()))

        assert [i.video_url for i in inputs] == ["https://cdn.test/v1.mp4", "https://cdn.test/v4.mp4"]
        assert inputs[0].transition == TransitionType.WIPE_LEFT
        assert inputs[0].duration == 3.0
        assert inputs[-1].transition == TransitionType.NONE

    def test_nothing_ready(self):
        assert build_inputs(normalize_session_row(_row(scenes=[{"id": 1}]))) == []


class TestVideoAssemblyService:
    @pytest.mark.asyncio
    async def test_successful_run(self, assembly, asm_store, stitcher):
        started = await assembly.submit("s1")
        assert started.status == SessionStatus.GENERATING
        assert (await asm_store.get("s1")).current_step == 4

        await assembly.wait("s1")

        session = await asm_store.get("s1")
        assert session.status == SessionStatus.COMPLETED
        assert session.video_url == stitcher.url
        assert session.video_progress == 100
        assert session.assembly_stage == AssemblyStage.COMPLETE
        assert session.final_videos[0].scene_count == 2
        assert session.furthest_step == 4

        progress = await assembly.progress("s1")
        assert progress.progress == 100
        assert progress.video_url == stitcher.url

    @pytest.mark.asyncio
    async def test_failure_keeps_scenes(self, assembly, asm_store, stitcher):
        before = [(s.id, s.included, s.video_url) for s in (await asm_store.get("s1")).scenes]
        stitcher.error = StitchFailed("ffmpeg exited with code 1")

        await assembly.submit("s1")
        await assembly.wait("s1")

        session = await asm_store.get("s1")
        assert session.status == SessionStatus.FAILED
        assert session.assembly_stage == AssemblyStage.ERROR
        assert session.assembly_error == "ffmpeg exited with code 1"
        assert [(s.id, s.included, s.video_url) for s in session.scenes] == before
        assert session.video_url is None

        progress = await assembly.progress("s1")
        assert progress.status == SessionStatus.FAILED
        assert progress.message == "ffmpeg exited with code 1"

    @pytest.mark.asyncio
    async def test_resubmit_after_failure(self, assembly, asm_store, stitcher):
        stitcher.error = RuntimeError("disk full")
        await assembly.submit("s1")
        await assembly.wait("s1")
        assert (await asm_store.get("s1")).assembly_error == "Stitching failed: disk full"

        stitcher.error = None
        await assembly.submit("s1")
        await assembly.wait("s1")
        assert (await asm_store.get("s1")).status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_rejects_while_running(self, assembly, stitcher):
        stitcher.gate = threading.Event()
        await assembly.submit("s1")
        try:
            with pytest.raises(ValidationError):
                await assembly.submit("s1")
        finally:
            stitcher.gate.set()
        await assembly.wait("s1")
        assert len(stitcher.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_run_stops_reporting(self, assembly, progress_store, stitcher):
        stitcher.gate = threading.Event()
        await assembly.submit("s1")
        while not stitcher.calls:
            await asyncio.sleep(0.01)

        await assembly.cancel("s1")
        stitcher.gate.set()
        assert await asyncio.to_thread(stitcher.finished.wait, 5)

        assert progress_store.get("s1") is None
        assert stitcher.uploads == 0

    @pytest.mark.asyncio
    async def test_resubmit_after_cancel_ignores_abandoned_run(self, asm_store, progress_store):
        gate = threading.Event()
        abandoned_done = threading.Event()
        runs = []
        seen = []

        def stitch(session_id, inputs, report):
            runs.append(session_id)
            if len(runs) == 1:
                gate.wait(timeout=5)
                try:
                    report(AssemblyStage.STITCHING, 75, "Stitching scenes")
                finally:
                    abandoned_done.set()
                return "https://cdn.test/stale.mp4"
            report(AssemblyStage.DOWNLOADING, 5, "Downloading scene 1")
            seen.append(progress_store.get(session_id)["progress"])
            return "https://cdn.test/fresh.mp4"

        assembly = VideoAssemblyService(asm_store, progress_store, stitch)
        await assembly.submit("s1")
        while not runs:
            await asyncio.sleep(0.01)
        await assembly.cancel("s1")

        await assembly.submit("s1")
        await assembly.wait("s1")
        gate.set()
        assert await asyncio.to_thread(abandoned_done.wait, 5)

        session = await asm_store.get("s1")
        assert seen == [5]
        assert session.status == SessionStatus.COMPLETED
        assert session.video_url == "https://cdn.test/fresh.mp4"
        assert progress_store.get("s1")["progress"] == 100

    @pytest.mark.asyncio
    async def test_no_videos(self, progress_store, stitcher):
        store = InMemorySessionStore()
        store.put_row(_row(scenes=[{"id": 1, "prompt": "x"}]))
        assembly = VideoAssemblyService(store, progress_store, stitcher)

        with pytest.raises(ValidationError):
            await assembly.submit("s1")
        assert (await store.get("s1")).status == SessionStatus.DRAFT

    @pytest.mark.asyncio
    async def test_progress_never_moves_backwards(self, asm_store, progress_store):
        seen = []

        def jittery(session_id, inputs, report):
            report(AssemblyStage.STITCHING, 60, "Stitching scenes")
            report(AssemblyStage.STITCHING, 45, "Stitching scenes")
            seen.append(progress_store.get(session_id)["progress"])
            return "https://cdn.test/final.mp4"

        assembly = VideoAssemblyService(asm_store, progress_store, jittery)
        await assembly.submit("s1")
        await assembly.wait("s1")

        assert seen == [60]

    @pytest.mark.asyncio
    async def test_live_progress_while_running(self, assembly, stitcher):
        stitcher.gate = threading.Event()
        await assembly.submit("s1")
        progress = await assembly.progress("s1")
        stitcher.gate.set()
        await assembly.wait("s1")

        assert progress.status == SessionStatus.GENERATING
        assert progress.stage == AssemblyStage.DOWNLOADING


class TestStitchScenes:
    def test_single_clip_is_the_final_video(self):
        reports = []
        url = stitch_module.stitch_scenes(
            "s1",
            [AssemblyInput(video_url="https://cdn.test/only.mp4", transition=TransitionType.NONE)],
            lambda stage, pct, msg: reports.append((stage, pct)),
        )
        assert url == "https://cdn.test/only.mp4"
        assert reports == [(AssemblyStage.COMPLETE, 100)]

    def test_empty_input(self):
        with pytest.raises(StitchFailed):
            stitch_module.stitch_scenes("s1", [], lambda *a: None)

    def test_overlap(self):
        assert stitch_module.overlap_for(TransitionType.NONE) == 0.0
        assert stitch_module.overlap_for(TransitionType.FADE) == stitch_module.TRANSITION_DURATION
