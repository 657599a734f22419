"""
Media Version Registry.

Per-scene ordered history of generated variants with a current selection.
Every function is pure: it takes a Scene (or Session) and returns a new one,
so a reader holding the old object never sees a half-updated list.

Newest variant lives at index 0. Appending demotes every existing variant
to is_new=False and selects the new one.
"""

from datetime import datetime, timezone
from typing import Optional

from .errors import ValidationError
from .models import (
    FinalVideo,
    GenerationState,
    MediaKind,
    MediaVariant,
    Scene,
    Session,
)

# kind → (list field, selected index field, legacy projection field, state field)
_FIELDS = {
    MediaKind.IMAGE: ("images", "selected_image_index", "image_url", "image_state"),
    MediaKind.VIDEO: ("videos", "selected_video_index", "video_url", "video_state"),
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def variants(scene: Scene, kind: MediaKind) -> list[MediaVariant]:
    list_field, _, _, _ = _FIELDS[MediaKind(kind)]
    return getattr(scene, list_field)


def selected_index(scene: Scene, kind: MediaKind) -> int:
    _, index_field, _, _ = _FIELDS[MediaKind(kind)]
    return getattr(scene, index_field)


def append(scene: Scene, kind: MediaKind, url: str, now: Optional[str] = None) -> Scene:
    """Prepend a fresh variant, demote the rest and select the new one."""
    list_field, index_field, legacy_field, _ = _FIELDS[MediaKind(kind)]
    existing = [v.model_copy(update={"is_new": False}) for v in getattr(scene, list_field)]
    fresh = MediaVariant(url=url, is_new=True, created_at=now or _now_iso())
    return scene.model_copy(update={
        list_field: [fresh, *existing],
        index_field: 0,
        legacy_field: url,
    })


def select(scene: Scene, kind: MediaKind, index: int) -> Scene:
    list_field, index_field, legacy_field, _ = _FIELDS[MediaKind(kind)]
    items = getattr(scene, list_field)
    if index < 0 or index >= len(items):
        raise ValidationError(
            f"Invalid {MediaKind(kind).value} index {index} for scene {scene.id}. "
            f"Valid range: 0–{len(items) - 1}"
        )
    return scene.model_copy(update={
        index_field: index,
        legacy_field: items[index].url,
    })


def selected_url(scene: Scene, kind: MediaKind) -> Optional[str]:
    """Selected variant URL, falling back to the legacy single-URL field."""
    list_field, index_field, legacy_field, _ = _FIELDS[MediaKind(kind)]
    items = getattr(scene, list_field)
    if items:
        index = getattr(scene, index_field)
        if 0 <= index < len(items):
            return items[index].url
        return items[0].url
    return getattr(scene, legacy_field) or None


def contains(scene: Scene, kind: MediaKind, url: str) -> bool:
    """URL equality is the dedup key for reconciled results."""
    return any(v.url == url for v in variants(scene, kind))


def state_of(scene: Scene, kind: MediaKind) -> GenerationState:
    _, _, _, state_field = _FIELDS[MediaKind(kind)]
    return getattr(scene, state_field)


def set_state(scene: Scene, kind: MediaKind, state: GenerationState) -> Scene:
    _, _, _, state_field = _FIELDS[MediaKind(kind)]
    return scene.model_copy(update={state_field: state})


def clear_media(scene: Scene) -> Scene:
    """Drop everything regeneration produced, keeping the scene's script."""
    return scene.model_copy(update={
        "image_url": None,
        "images": [],
        "selected_image_index": 0,
        "image_state": GenerationState(),
        "video_url": None,
        "videos": [],
        "selected_video_index": 0,
        "video_state": GenerationState(),
    })


def append_final_video(session: Session, url: str, scene_count: int, now: Optional[str] = None) -> Session:
    existing = [v.model_copy(update={"is_new": False}) for v in session.final_videos]
    fresh = FinalVideo(url=url, is_new=True, created_at=now or _now_iso(), scene_count=scene_count)
    return session.model_copy(update={
        "final_videos": [fresh, *existing],
        "video_url": url,
    })
