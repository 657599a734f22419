"""
Step Gate.

Navigation and edit-permission rules for the five-step flow, plus the cascade
that discards downstream work when an earlier step is edited.

  can_navigate / navigate / advance / cascade_reset — pure Session → Session
  StepGate.request_mutation                      — runs an edit now, or parks it
                                                   as the session's pending edit
  StepGate.confirm / cancel                      — resolve the pending edit

A pending edit is never applied without confirm(); until then the session is
untouched. Each session holds at most one pending edit and a newer request
replaces the older one.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from .errors import ValidationError
from .models import STEP_NAMES, Session, SessionStatus, Step
from .registry import clear_media
from .store import SessionStore

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
ResetHook = Callable[[str, int], Awaitable[None]]


# ── Pure decisions ───────────────────────────────────────────────────────────

def can_navigate(session: Session, target: int) -> bool:
    return 0 <= target <= session.furthest_step


def navigate(session: Session, target: int) -> Session:
    """Viewing an earlier step changes current_step only."""
    if not can_navigate(session, target):
        raise ValidationError(
            f"Cannot navigate to step {target}; furthest reached is {session.furthest_step}"
        )
    return session.model_copy(update={"current_step": target})


def advance(session: Session, step: int) -> Session:
    return session.model_copy(update={
        "current_step": step,
        "furthest_step": max(session.furthest_step, step),
    })


def clear_final_video(session: Session) -> Session:
    return session.model_copy(update={
        "video_url": None,
        "final_videos": [],
        "video_progress": 0,
        "status": SessionStatus.DRAFT,
        "assembly_stage": None,
        "assembly_message": None,
        "assembly_error": None,
    })


def cascade_reset(session: Session, target: int) -> Session:
    """Discard everything that depended on the step being edited."""
    target = Step(target)
    update: dict = {}

    if target <= Step.AUDIENCE:
        update.update({
            "generated_characters": [],
            "selected_character": None,
        })
    if target <= Step.CHARACTER:
        update.update({
            "generated_product_images": [],
            "selected_product_image": None,
            "scenes": [],
        })
    elif target == Step.PRODUCT_SHOT:
        # scene text, order, inclusion and transitions survive; generated media does not
        update["scenes"] = [clear_media(scene) for scene in session.scenes]

    reset = clear_final_video(session.model_copy(update=update))
    logger.info(
        f"Session {session.id}: cascade reset to step {int(target)} "
        f"({STEP_NAMES[target]}), furthest {session.furthest_step} → {int(target)}"
    )
    return reset.model_copy(update={
        "current_step": int(target),
        "furthest_step": int(target),
    })


# ── Pending edits ────────────────────────────────────────────────────────────

@dataclass
class PendingEdit:
    id: str
    target: int
    action: Action
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class MutationOutcome:
    executed: bool
    result: Any = None
    pending_edit_id: Optional[str] = None
    target_step: Optional[int] = None
    furthest_step: Optional[int] = None


class StepGate:
    """
    Decides whether an edit at a given step runs now or needs confirmation.

    Usage:
        gate = StepGate(store)
        outcome = await gate.request_mutation(session_id, Step.CHARACTER, action)
        if not outcome.executed:
            ...  # show the user what will be lost
            await gate.confirm(session_id, outcome.pending_edit_id)
    """

    def __init__(self, store: SessionStore, on_reset: Optional[ResetHook] = None):
        self._store = store
        self._pending: dict[str, PendingEdit] = {}
        self._on_reset = on_reset

    def pending(self, session_id: str) -> Optional[PendingEdit]:
        return self._pending.get(session_id)

    def discard(self, session_id: str):
        self._pending.pop(session_id, None)

    async def request_mutation(self, session_id: str, target: int, action: Action) -> MutationOutcome:
        session = await self._store.get(session_id)
        if target >= session.furthest_step:
            return MutationOutcome(executed=True, result=await action())

        edit = PendingEdit(id=str(uuid4()), target=int(target), action=action)
        replaced = self._pending.get(session_id)
        self._pending[session_id] = edit
        if replaced:
            logger.info(f"Session {session_id}: pending edit {replaced.id} replaced by {edit.id}")
        logger.info(
            f"Session {session_id}: edit at step {target} needs confirmation "
            f"(furthest {session.furthest_step}) → pending {edit.id}"
        )
        return MutationOutcome(
            executed=False,
            pending_edit_id=edit.id,
            target_step=int(target),
            furthest_step=session.furthest_step,
        )

    def _take(self, session_id: str, edit_id: str) -> PendingEdit:
        edit = self._pending.get(session_id)
        if edit is None or edit.id != edit_id:
            raise ValidationError(f"No pending edit {edit_id} for session {session_id}")
        del self._pending[session_id]
        return edit

    async def confirm(self, session_id: str, edit_id: str) -> MutationOutcome:
        edit = self._take(session_id, edit_id)
        if self._on_reset:
            await self._on_reset(session_id, edit.target)
        session = await self._store.mutate(session_id, lambda s: cascade_reset(s, edit.target))
        result = await edit.action()
        return MutationOutcome(
            executed=True,
            result=result,
            target_step=edit.target,
            furthest_step=session.furthest_step,
        )

    def cancel(self, session_id: str, edit_id: str):
        edit = self._take(session_id, edit_id)
        logger.info(f"Session {session_id}: pending edit {edit.id} at step {edit.target} cancelled")
