"""
Creative Session Service.

Manages the lifecycle of a creative session through its five steps:
  0. Target Audience  — audience → LLM production plan → scene scripts
  1. Character        — 4 character variations, pick one
  2. Product Shot     — 4 product-shot variations, pick one
  3. Scenes           — edit/reorder scenes, generate scene images + videos
  4. Generate         — stitch the included scene videos into the final ad

Every edit goes through the step gate: editing a step before the furthest one
reached raises ConfirmationRequired and nothing changes until the pending
edit is confirmed, at which point downstream work is discarded first.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .. import gemini, presets
from . import registry
from .assembly import VideoAssemblyService
from .dispatcher import GenerationDispatcher
from .errors import ConfirmationRequired, DispatchFailure, ValidationError
from .imagery import ImageGenerator
from .jobs import SceneJobService
from .models import (
    AssemblyProgress,
    AudienceProfile,
    BatchDispatchResponse,
    CandidateImage,
    DispatchResponse,
    MediaKind,
    SceneEdit,
    Session,
    Step,
)
from .normalize import normalize_scene, parse_ad_plan
from .reconciler import JobReconciler
from .step_gate import StepGate, advance, navigate
from .store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

Planner = Callable[[dict, dict], dict]


class SessionService:
    """
    Usage:
        service = SessionService()
        session = await service.create_session(user_id, product_id)
        session = await service.submit_audience(session.id, user_id, audience)
        ...
        await service.generate_video(session.id, user_id)
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        jobs=None,
        images: Optional[ImageGenerator] = None,
        planner: Optional[Planner] = None,
        progress_store=None,
        stitcher=None,
        poll_interval: Optional[float] = None,
    ):
        self.store = store or get_session_store()
        self.images = images or ImageGenerator()
        self.jobs = jobs or SceneJobService(images=self.images)
        self.reconciler = JobReconciler(self.store, self.jobs, interval=poll_interval)
        self.dispatcher = GenerationDispatcher(self.store, self.jobs, self.reconciler)
        self.assembly = VideoAssemblyService(self.store, progress_store, stitcher)
        self.gate = StepGate(self.store, on_reset=self._on_reset)
        self._planner = planner or gemini.generate_ad_plan

    # ── Plumbing ─────────────────────────────────────────────────────────

    async def _on_reset(self, session_id: str, target: int):
        """Stop background work whose results the cascade is about to discard."""
        if target <= Step.PRODUCT_SHOT:
            await self.reconciler.stop(session_id)
            await self.jobs.forget(session_id)
        await self.assembly.cancel(session_id)

    async def _gated(self, session_id: str, target: int, action: Callable[[], Awaitable[Any]]) -> Any:
        outcome = await self.gate.request_mutation(session_id, target, action)
        if not outcome.executed:
            raise ConfirmationRequired(
                outcome.pending_edit_id, outcome.target_step, outcome.furthest_step
            )
        return outcome.result

    async def get_owned(self, session_id: str, user_id: Optional[str]) -> Session:
        session = await self.store.get(session_id)
        if user_id and session.user_id != user_id:
            raise PermissionError("You don't own this session.")
        return session

    async def _product(self, product_id: str) -> dict:
        product = await self.store.get_product(product_id)
        if not product:
            raise ValidationError(f"Product {product_id} not found")
        return product

    async def shutdown(self):
        await self.reconciler.shutdown()
        await self.jobs.shutdown()
        await self.assembly.shutdown()

    # ═════════════════════════════════════════════════════════════════════
    # A. Session lifecycle
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def demographic_options() -> dict:
        return presets.DEMOGRAPHIC_OPTIONS

    async def create_session(self, user_id: str, product_id: str) -> Session:
        await self._product(product_id)
        return await self.store.create(user_id, product_id)

    async def list_sessions(self, user_id: str, product_id: Optional[str] = None) -> list[Session]:
        return await self.store.list(user_id, product_id)

    async def get_session(self, session_id: str, user_id: Optional[str]) -> Session:
        return await self.get_owned(session_id, user_id)

    async def rename_session(self, session_id: str, user_id: Optional[str], title: str) -> Session:
        await self.get_owned(session_id, user_id)
        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        return await self.store.update(session_id, {"title": title})

    async def delete_session(self, session_id: str, user_id: Optional[str]):
        await self.get_owned(session_id, user_id)
        await self.reconciler.stop(session_id)
        await self.jobs.forget(session_id)
        await self.assembly.cancel(session_id)
        self.gate.discard(session_id)
        await self.store.delete(session_id)
        logger.info(f"Session {session_id} deleted")

    async def navigate(self, session_id: str, user_id: Optional[str], step: int) -> Session:
        await self.get_owned(session_id, user_id)
        return await self.store.mutate(session_id, lambda s: navigate(s, step))

    # ═════════════════════════════════════════════════════════════════════
    # B. Step 0 — Target Audience
    # ═════════════════════════════════════════════════════════════════════

    async def submit_audience(
        self, session_id: str, user_id: Optional[str], audience: AudienceProfile
    ) -> Session:
        session = await self.get_owned(session_id, user_id)
        product = await self._product(session.product_id)

        async def action() -> Session:
            plan = await asyncio.to_thread(self._planner, product, audience.model_dump())
            scripts = [normalize_scene(scene, i) for i, scene in enumerate(plan.get("scenes") or [])]
            if not scripts:
                raise ValidationError("The production plan contained no scenes")
            ad_plan = parse_ad_plan(plan.get("plan"))

            logger.info(f"Session {session_id}: plan ready with {len(scripts)} scene(s)")
            return await self.store.mutate(session_id, lambda s: advance(s.model_copy(update={
                "target_audience": audience,
                "ad_plan": ad_plan,
                "product_prompt": plan.get("product_prompt") or "",
                "product_breakdown": plan.get("product_breakdown") or "",
                "character_prompt": plan.get("character_prompt") or "",
                "scene_scripts": scripts,
                "scenes": scripts,
            }), Step.CHARACTER))

        return await self._gated(session_id, Step.AUDIENCE, action)

    # ═════════════════════════════════════════════════════════════════════
    # C. Step 1 — Character
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _avatar(session: Session) -> dict:
        avatar = session.ad_plan.customer_avatar.model_dump() if session.ad_plan else {}
        avatar["visual_description"] = avatar.get("visual_description") or session.character_prompt
        return avatar

    async def _variations(self, label: str, coros: list) -> list[CandidateImage]:
        results = await asyncio.gather(*coros, return_exceptions=True)
        candidates = []
        for position, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error(f"{label} variation {position + 1} failed: {result}")
                continue
            candidates.append(CandidateImage(id=len(candidates) + 1, url=result))
        if not candidates:
            raise DispatchFailure(f"Failed to generate {label} images")
        return candidates

    async def generate_characters(self, session_id: str, user_id: Optional[str]) -> Session:
        session = await self.get_owned(session_id, user_id)
        avatar = self._avatar(session)
        if not avatar["visual_description"]:
            raise ValidationError("No character description available. Complete the Target Audience step first.")

        async def action() -> Session:
            candidates = await self._variations("character", [
                self.images.character(session_id, avatar, variation, i)
                for i, variation in enumerate(presets.CHARACTER_VARIATIONS)
            ])
            return await self.store.mutate(session_id, lambda s: advance(s.model_copy(update={
                "generated_characters": candidates,
                "selected_character": None,
            }), Step.CHARACTER))

        return await self._gated(session_id, Step.CHARACTER, action)

    async def select_character(self, session_id: str, user_id: Optional[str], character_url: str) -> Session:
        session = await self.get_owned(session_id, user_id)
        if character_url not in {c.url for c in session.generated_characters}:
            raise ValidationError("Selected character is not one of the generated characters")

        async def action() -> Session:
            return await self.store.mutate(session_id, lambda s: advance(s.model_copy(update={
                "selected_character": character_url,
            }), Step.PRODUCT_SHOT))

        return await self._gated(session_id, Step.CHARACTER, action)

    # ═════════════════════════════════════════════════════════════════════
    # D. Step 2 — Product Shot
    # ═════════════════════════════════════════════════════════════════════

    async def generate_product_images(self, session_id: str, user_id: Optional[str]) -> Session:
        session = await self.get_owned(session_id, user_id)
        if not session.selected_character:
            raise ValidationError("No character selected. Please complete the Character step first.")
        product = await self._product(session.product_id)
        description = self._avatar(session)["visual_description"]

        async def action() -> Session:
            candidates = await self._variations("product shot", [
                self.images.product_shot(
                    session_id, session.selected_character, product, variation, i, description,
                )
                for i, variation in enumerate(presets.PRODUCT_SHOT_VARIATIONS)
            ])
            return await self.store.mutate(session_id, lambda s: advance(s.model_copy(update={
                "generated_product_images": candidates,
                "selected_product_image": None,
            }), Step.PRODUCT_SHOT))

        return await self._gated(session_id, Step.PRODUCT_SHOT, action)

    async def select_product_image(self, session_id: str, user_id: Optional[str], image_url: str) -> Session:
        session = await self.get_owned(session_id, user_id)
        if image_url not in {c.url for c in session.generated_product_images}:
            raise ValidationError("Selected image is not one of the generated product shots")

        def select(s: Session) -> Session:
            scenes = s.scenes or [registry.clear_media(scene) for scene in s.scene_scripts]
            return advance(s.model_copy(update={
                "selected_product_image": image_url,
                "scenes": scenes,
            }), Step.SCENES)

        async def action() -> Session:
            return await self.store.mutate(session_id, select)

        return await self._gated(session_id, Step.PRODUCT_SHOT, action)

    # ═════════════════════════════════════════════════════════════════════
    # E. Step 3 — Scenes
    # ═════════════════════════════════════════════════════════════════════

    async def update_scenes(self, session_id: str, user_id: Optional[str], edits: list[SceneEdit]) -> Session:
        session = await self.get_owned(session_id, user_id)
        current_ids = [scene.id for scene in session.scenes]
        edit_ids = [edit.id for edit in edits]
        if sorted(edit_ids) != sorted(current_ids):
            raise ValidationError("Scene edits must list every existing scene exactly once")

        def apply(s: Session) -> Session:
            by_id = {scene.id: scene for scene in s.scenes}
            if [e.id for e in edits] != [scene.id for scene in s.scenes] and s.has_pending_jobs:
                raise ValidationError("Scenes can't be reordered while generation is running")
            scenes = []
            for edit in edits:
                base = by_id[edit.id]
                changes = edit.model_dump(exclude_none=True, exclude={"id"})
                # media lists and generation states are carried over untouched
                scenes.append(base.model_copy(update=changes))
            return s.model_copy(update={"scenes": scenes})

        async def action() -> Session:
            return await self.store.mutate(session_id, apply)

        return await self._gated(session_id, Step.SCENES, action)

    async def select_scene_media(
        self, session_id: str, user_id: Optional[str], index: int, kind: MediaKind, variant_index: int
    ) -> Session:
        await self.get_owned(session_id, user_id)

        async def action() -> Session:
            await self.store.update_scene(
                session_id, index, lambda scene: registry.select(scene, kind, variant_index)
            )
            return await self.store.get(session_id)

        return await self._gated(session_id, Step.SCENES, action)

    async def generate_scene_image(self, session_id: str, user_id: Optional[str], index: int) -> DispatchResponse:
        await self.get_owned(session_id, user_id)
        return await self._gated(
            session_id, Step.SCENES, lambda: self.dispatcher.dispatch_scene_image(session_id, index)
        )

    async def generate_scene_video(self, session_id: str, user_id: Optional[str], index: int) -> DispatchResponse:
        await self.get_owned(session_id, user_id)
        return await self._gated(
            session_id, Step.SCENES, lambda: self.dispatcher.dispatch_scene_video(session_id, index)
        )

    async def generate_all_scene_videos(self, session_id: str, user_id: Optional[str]) -> BatchDispatchResponse:
        await self.get_owned(session_id, user_id)
        return await self._gated(
            session_id, Step.SCENES, lambda: self.dispatcher.dispatch_all_videos(session_id)
        )

    async def scene_status(self, session_id: str, user_id: Optional[str]) -> list[dict]:
        """Per-scene media and generation state; resumes polling if work is still pending."""
        session = await self.get_owned(session_id, user_id)
        if session.has_pending_jobs:
            self.reconciler.ensure_polling(session_id)
        return [
            {
                "index": index,
                "id": scene.id,
                "included": scene.included,
                "image_url": registry.selected_url(scene, MediaKind.IMAGE),
                "image_state": scene.image_state,
                "video_url": registry.selected_url(scene, MediaKind.VIDEO),
                "video_state": scene.video_state,
                "videos": scene.videos,
                "selected_video_index": scene.selected_video_index,
            }
            for index, scene in enumerate(session.scenes)
        ]

    # ═════════════════════════════════════════════════════════════════════
    # F. Step 4 — Generate
    # ═════════════════════════════════════════════════════════════════════

    async def generate_video(self, session_id: str, user_id: Optional[str]) -> AssemblyProgress:
        await self.get_owned(session_id, user_id)
        return await self.assembly.submit(session_id)

    async def progress(self, session_id: str, user_id: Optional[str]) -> AssemblyProgress:
        await self.get_owned(session_id, user_id)
        return await self.assembly.progress(session_id)

    # ═════════════════════════════════════════════════════════════════════
    # G. Pending edits
    # ═════════════════════════════════════════════════════════════════════

    async def confirm_edit(self, session_id: str, user_id: Optional[str], edit_id: str) -> Any:
        await self.get_owned(session_id, user_id)
        outcome = await self.gate.confirm(session_id, edit_id)
        return outcome.result

    async def cancel_edit(self, session_id: str, user_id: Optional[str], edit_id: str) -> Session:
        session = await self.get_owned(session_id, user_id)
        self.gate.cancel(session_id, edit_id)
        return session


# ── Process singleton ────────────────────────────────────────────────────────

_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    global _service
    if _service is None:
        _service = SessionService()
    return _service


def set_session_service(service: Optional[SessionService]):
    """Swap the process service (tests, alternative wiring)."""
    global _service
    _service = service
