"""
Generation Job Dispatcher.

Validates a scene, marks it queued, and hands the work to the job backend.
Scene state is written before the submission so the UI reflects the request
immediately; a failed submission restores whatever state the scene had.
Dispatch never waits for generation. The reconciler picks results up later.
"""

import logging
from uuid import uuid4

from .. import metrics, presets
from . import registry
from .errors import DispatchFailure, ValidationError
from .models import (
    BatchDispatchResponse,
    DispatchResponse,
    GenerationState,
    JobStatus,
    MediaKind,
    Scene,
    Session,
)
from .reconciler import JobReconciler
from .store import SessionStore

logger = logging.getLogger(__name__)


def _scene_at(session: Session, index: int) -> Scene:
    if index < 0 or index >= len(session.scenes):
        raise ValidationError(
            f"Invalid scene index {index}. Session has {len(session.scenes)} scene(s)"
        )
    return session.scenes[index]


def video_prompt(scene: Scene) -> str:
    return presets.scene_video_prompt(scene.prompt, scene.motion, scene.dialogue)


def is_video_eligible(scene: Scene) -> bool:
    return (
        scene.included
        and bool(registry.selected_url(scene, MediaKind.IMAGE))
        and not scene.video_state.pending
    )


class GenerationDispatcher:
    def __init__(self, store: SessionStore, jobs, reconciler: JobReconciler):
        self._store = store
        self._jobs = jobs
        self._reconciler = reconciler

    async def _dispatch(self, session_id: str, index: int, kind: MediaKind, submit) -> DispatchResponse:
        # the id is known before the provider round trip so the reconciler
        # can tell an in-flight submission from the scene's older jobs
        job_id = str(uuid4())
        prior: dict = {}

        def mark_queued(scene: Scene) -> Scene:
            prior["state"] = registry.state_of(scene, kind)
            return registry.set_state(
                scene, kind, GenerationState(status=JobStatus.QUEUED, progress=0, job_id=job_id)
            )

        await self._store.update_scene(session_id, index, mark_queued)

        try:
            await submit(job_id)
        except Exception as e:
            def restore(scene: Scene) -> Scene:
                if registry.state_of(scene, kind).job_id != job_id:
                    return scene
                return registry.set_state(scene, kind, prior["state"])

            await self._store.update_scene(session_id, index, restore)
            metrics.inc_counter(f"dispatch.{kind.value}.failed")
            metrics.record_error(f"dispatch.{kind.value}", type(e).__name__, str(e), session_id)
            if isinstance(e, DispatchFailure):
                raise
            raise DispatchFailure(f"Failed to start {kind.value} generation: {e}") from e

        self._reconciler.ensure_polling(session_id)
        metrics.inc_counter(f"dispatch.{kind.value}")
        logger.info(f"Session {session_id} scene {index}: {kind.value} job {job_id} dispatched")
        return DispatchResponse(scene_index=index, kind=kind, job_id=job_id)

    async def dispatch_scene_image(self, session_id: str, index: int) -> DispatchResponse:
        session = await self._store.get(session_id)
        scene = _scene_at(session, index)
        if not scene.prompt.strip():
            raise ValidationError(f"Scene {index + 1} has no visual prompt")
        if not session.selected_product_image:
            raise ValidationError("No product image selected. Please complete the Product Shot step first.")

        return await self._dispatch(
            session_id, index, MediaKind.IMAGE,
            lambda job_id: self._jobs.submit(
                session_id, index, MediaKind.IMAGE, scene.prompt,
                reference_url=session.selected_product_image, scene_id=scene.id, job_id=job_id,
            ),
        )

    async def dispatch_scene_video(self, session_id: str, index: int) -> DispatchResponse:
        session = await self._store.get(session_id)
        scene = _scene_at(session, index)
        image_url = registry.selected_url(scene, MediaKind.IMAGE)
        if not image_url:
            raise ValidationError(f"Scene {index + 1} needs an image before generating video")

        return await self._dispatch(
            session_id, index, MediaKind.VIDEO,
            lambda job_id: self._jobs.submit(
                session_id, index, MediaKind.VIDEO, video_prompt(scene),
                image_url=image_url, scene_id=scene.id, job_id=job_id,
            ),
        )

    async def dispatch_all_videos(self, session_id: str) -> BatchDispatchResponse:
        session = await self._store.get(session_id)
        eligible = [i for i, scene in enumerate(session.scenes) if is_video_eligible(scene)]
        if not eligible:
            raise ValidationError("No scenes are ready for video generation")

        result = BatchDispatchResponse()
        for index in eligible:
            try:
                result.jobs.append(await self.dispatch_scene_video(session_id, index))
            except DispatchFailure as e:
                result.failed[index] = str(e)
                await self._store.update_scene(
                    session_id, index,
                    lambda s, msg=str(e): registry.set_state(
                        s, MediaKind.VIDEO, GenerationState(status=JobStatus.FAILED, error=msg)
                    ),
                )

        logger.info(
            f"Session {session_id}: batch video dispatch — "
            f"{len(result.jobs)} started, {len(result.failed)} failed"
        )
        return result
