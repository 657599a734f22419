"""
Video Assembly Pipeline.

Turns the session's included scenes into an ordered stitch request, runs the
stitcher in the background and tracks its progress:

  submit()    validate → status=generating → stitcher on a worker thread
  progress()  live stage/percent while generating, final state afterwards

Scenes are never modified by assembly; a failed run leaves them as they were
so resubmitting rebuilds the same input list.
"""

import time
import asyncio
import logging
import threading
from typing import Callable, Optional

from .. import metrics
from . import registry
from .errors import StitchFailed, ValidationError
from .models import (
    AssemblyInput,
    AssemblyProgress,
    AssemblyStage,
    MediaKind,
    Session,
    SessionStatus,
    Step,
    TransitionType,
)
from .progress_store import get_progress_store
from .step_gate import advance
from .stitcher import stitch_scenes
from .store import SessionStore

logger = logging.getLogger(__name__)

Stitcher = Callable[[str, list[AssemblyInput], Callable], str]


def build_inputs(session: Session) -> list[AssemblyInput]:
    """Included scenes with a selected video, in scene order; the last one never transitions."""
    inputs = []
    for scene in session.scenes:
        url = registry.selected_url(scene, MediaKind.VIDEO)
        if not scene.included or not url:
            continue
        inputs.append(AssemblyInput(
            video_url=url,
            transition=scene.transition_type,
            duration=scene.duration,
            include_in_final=True,
        ))
    if inputs:
        inputs[-1] = inputs[-1].model_copy(update={"transition": TransitionType.NONE})
    return inputs


class VideoAssemblyService:
    def __init__(self, store: SessionStore, progress_store=None, stitcher: Optional[Stitcher] = None):
        self._store = store
        self._progress = progress_store or get_progress_store()
        self._stitch = stitcher or stitch_scenes
        self._tasks: dict[str, asyncio.Task] = {}
        # set when a run is cancelled; its stitcher thread may still be alive
        self._cancelled: dict[str, threading.Event] = {}
        self._report_lock = threading.Lock()

    build_inputs = staticmethod(build_inputs)

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def submit(self, session_id: str) -> AssemblyProgress:
        session = await self._store.get(session_id)
        if session.status == SessionStatus.GENERATING and (
            self.is_running(session_id) or self._progress.get(session_id)
        ):
            raise ValidationError("Video assembly is already in progress")

        inputs = build_inputs(session)
        if not inputs:
            raise ValidationError(
                "No scene videos ready. Generate a video for at least one included scene first."
            )

        def start(s: Session) -> Session:
            return advance(s, Step.GENERATE).model_copy(update={
                "status": SessionStatus.GENERATING,
                "video_progress": 0,
                "assembly_stage": AssemblyStage.DOWNLOADING,
                "assembly_message": "Starting video assembly",
                "assembly_error": None,
            })

        await self._store.mutate(session_id, start)
        self._progress.set(session_id, {
            "progress": 0,
            "stage": AssemblyStage.DOWNLOADING.value,
            "message": "Starting video assembly",
        })

        cancelled = threading.Event()
        self._cancelled[session_id] = cancelled
        self._tasks[session_id] = asyncio.create_task(self._run(session_id, inputs, cancelled))
        logger.info(f"Session {session_id}: assembly started with {len(inputs)} scene(s)")
        return AssemblyProgress(
            progress=0,
            status=SessionStatus.GENERATING,
            stage=AssemblyStage.DOWNLOADING,
            message="Starting video assembly",
        )

    async def progress(self, session_id: str) -> AssemblyProgress:
        session = await self._store.get(session_id)
        live = self._progress.get(session_id)
        if session.status == SessionStatus.GENERATING and live:
            return AssemblyProgress(
                progress=live["progress"],
                status=SessionStatus.GENERATING,
                stage=live.get("stage"),
                message=live.get("message"),
            )
        return AssemblyProgress(
            progress=session.video_progress,
            status=session.status,
            stage=session.assembly_stage,
            message=session.assembly_error or session.assembly_message,
            video_url=session.video_url,
        )

    async def wait(self, session_id: str):
        task = self._tasks.get(session_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    def _abandon(self, session_id: str):
        cancelled = self._cancelled.pop(session_id, None)
        if cancelled is not None:
            with self._report_lock:
                cancelled.set()

    async def cancel(self, session_id: str):
        self._abandon(session_id)
        task = self._tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._progress.delete(session_id)

    async def shutdown(self):
        for session_id in list(self._cancelled):
            self._abandon(session_id)
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── Background run ───────────────────────────────────────────────────

    def _record(self, session_id: str, stage: AssemblyStage, pct: int, message: str) -> int:
        """Store live progress; percent never moves backwards within a run."""
        current = self._progress.get(session_id)
        if current:
            pct = max(pct, int(current.get("progress") or 0))
        pct = max(0, min(100, pct))
        self._progress.set(session_id, {"progress": pct, "stage": AssemblyStage(stage).value, "message": message})
        return pct

    async def _mirror(self, session_id: str, pct: int, stage: AssemblyStage, message: str):
        def apply(s: Session) -> Session:
            if s.status != SessionStatus.GENERATING:
                return s
            return s.model_copy(update={
                "video_progress": max(s.video_progress, pct),
                "assembly_stage": stage,
                "assembly_message": message,
            })

        await self._store.mutate(session_id, apply)

    async def _run(self, session_id: str, inputs: list[AssemblyInput], cancelled: threading.Event):
        loop = asyncio.get_running_loop()
        mirrors = []
        started = time.time()

        def report(stage: AssemblyStage, pct: int, message: str):
            with self._report_lock:
                if cancelled.is_set():
                    # aborts the stitcher thread before it writes or uploads anything else
                    raise StitchFailed("Assembly cancelled")
                pct = self._record(session_id, stage, pct, message)
            mirrors.append(asyncio.run_coroutine_threadsafe(
                self._mirror(session_id, pct, AssemblyStage(stage), message), loop
            ))

        try:
            url = await asyncio.to_thread(self._stitch, session_id, inputs, report)
            if not url:
                raise StitchFailed("Stitcher returned no video URL")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await asyncio.gather(*[asyncio.wrap_future(f) for f in mirrors], return_exceptions=True)
            message = str(e) if isinstance(e, StitchFailed) else f"Stitching failed: {e}"
            logger.error(f"Session {session_id}: assembly failed: {message}")
            metrics.inc_counter("assembly.failed")
            metrics.record_error("assembly", type(e).__name__, message, session_id)
            await self._store.mutate(session_id, lambda s: s.model_copy(update={
                "status": SessionStatus.FAILED,
                "assembly_stage": AssemblyStage.ERROR,
                "assembly_error": message,
                "assembly_message": None,
            }))
            self._progress.set(session_id, {
                "progress": 0, "stage": AssemblyStage.ERROR.value, "message": message,
            }, expire=True)
            return

        await asyncio.gather(*[asyncio.wrap_future(f) for f in mirrors], return_exceptions=True)

        def complete(s: Session) -> Session:
            s = registry.append_final_video(s, url, scene_count=len(inputs))
            return s.model_copy(update={
                "status": SessionStatus.COMPLETED,
                "video_progress": 100,
                "assembly_stage": AssemblyStage.COMPLETE,
                "assembly_message": "Video ready",
                "assembly_error": None,
            })

        await self._store.mutate(session_id, complete)
        self._progress.set(session_id, {
            "progress": 100, "stage": AssemblyStage.COMPLETE.value, "message": "Video ready",
        }, expire=True)
        metrics.inc_counter("assembly.completed")
        metrics.record_latency("assembly", (time.time() - started) * 1000)
        logger.info(f"Session {session_id}: assembly complete → {url}")
