"""
Row normalization for persisted sessions.

Rows arrive with camelCase or snake_case keys depending on which writer
produced them, and older sessions predate the multi-variant media lists.
normalize_session_row() is the single place that reconciles all of that;
stores call it exactly once per load and nothing downstream looks at raw rows.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .models import (
    AdPlan,
    AudienceProfile,
    CandidateImage,
    CustomerAvatar,
    FinalVideo,
    GenerationState,
    JobStatus,
    MediaVariant,
    Scene,
    Session,
    SessionStatus,
    TransitionType,
)

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def snake_keys(data: dict) -> dict:
    """Shallow camelCase → snake_case; snake_case wins when both are present."""
    out: dict = {}
    for key, value in data.items():
        skey = _snake(key)
        if skey in out and key != skey:
            continue
        out[skey] = value
    return out


def _json(value: Any) -> Any:
    # jsonb columns sometimes come back as text
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Media ────────────────────────────────────────────────────────────────────

def _variants(raw: Any) -> list[MediaVariant]:
    items = []
    for entry in _json(raw) or []:
        if isinstance(entry, str):
            entry = {"url": entry}
        if not isinstance(entry, dict):
            continue
        entry = snake_keys(entry)
        if not entry.get("url"):
            continue
        items.append(MediaVariant(
            url=entry["url"],
            is_new=bool(entry.get("is_new", False)),
            created_at=_iso(entry.get("created_at")) or _now_iso(),
        ))
    return items


def _state(raw: Any, status: Any = None, progress: Any = None, error: Any = None) -> GenerationState:
    if isinstance(raw, dict):
        raw = snake_keys(raw)
        status = raw.get("status", status)
        progress = raw.get("progress", progress)
        error = raw.get("error", error)
        job_id = raw.get("job_id")
    else:
        job_id = None
    try:
        status = JobStatus(status) if status else None
    except ValueError:
        status = None
    progress = max(0, min(100, int(progress or 0)))
    return GenerationState(status=status, progress=progress, error=error, job_id=job_id)


def _transition(raw: Any) -> TransitionType:
    if not raw:
        return TransitionType.FADE
    try:
        return TransitionType(raw)
    except ValueError:
        logger.warning(f"Unknown transition type {raw!r}, using fade")
        return TransitionType.FADE


def _clamp_index(index: Any, length: int) -> int:
    try:
        index = int(index or 0)
    except (TypeError, ValueError):
        index = 0
    if length == 0 or index < 0 or index >= length:
        return 0
    return index


def normalize_scene(raw: dict, position: int = 0) -> Scene:
    """Build a Scene from a stored dict, migrating legacy single-URL media."""
    data = snake_keys(raw)

    images = _variants(data.get("images"))
    image_url = data.get("image_url") or None
    if image_url and not images:
        images = [MediaVariant(url=image_url, is_new=False, created_at=_now_iso())]

    videos = _variants(data.get("videos"))
    video_url = data.get("video_url") or None
    if video_url and not videos:
        videos = [MediaVariant(url=video_url, is_new=False, created_at=_now_iso())]

    image_state = _state(data.get("image_state"))
    if image_state.status is None and data.get("generating"):
        image_state = GenerationState(status=JobStatus.GENERATING)

    video_state = _state(
        data.get("video_state"),
        status=data.get("video_status"),
        progress=data.get("video_progress"),
        error=data.get("video_error"),
    )

    try:
        duration = float(data.get("duration") or data.get("video_duration") or 4)
    except (TypeError, ValueError):
        duration = 4.0
    if duration <= 0:
        duration = 4.0

    selected_image = _clamp_index(data.get("selected_image_index"), len(images))
    selected_video = _clamp_index(data.get("selected_video_index"), len(videos))

    return Scene(
        id=int(data.get("id", data.get("scene", position + 1))),
        title=data.get("title") or data.get("section") or "",
        prompt=data.get("prompt") or data.get("visuals") or "",
        dialogue=data.get("dialogue") or "",
        motion=data.get("motion") or "",
        transitions=data.get("transitions") or "",
        transition_type=_transition(data.get("transition_type") or data.get("transition")),
        included=data.get("included", data.get("include_in_final", True)) is not False,
        duration=duration,
        image_url=images[selected_image].url if images else None,
        images=images,
        selected_image_index=selected_image,
        image_state=image_state,
        video_url=videos[selected_video].url if videos else None,
        videos=videos,
        selected_video_index=selected_video,
        video_state=video_state,
    )


def _merge_scene_lists(original: list, edited: list) -> list[dict]:
    """Edited scenes override the originals field by field, matched by position."""
    merged = []
    for index, scene in enumerate(edited):
        base = original[index] if index < len(original) and isinstance(original[index], dict) else {}
        merged.append({**snake_keys(base), **snake_keys(scene)})
    return merged


# ── Session-level payloads ───────────────────────────────────────────────────

def _audience(raw: Any) -> Optional[AudienceProfile]:
    raw = _json(raw)
    if not isinstance(raw, dict):
        return None
    data = snake_keys(raw)
    known = set(AudienceProfile.model_fields) - {"extra"}
    extra = {k: v for k, v in data.items() if k not in known and k != "extra"}
    extra.update(data.get("extra") or {})
    return AudienceProfile(
        age_group=data.get("age_group"),
        gender=data.get("gender"),
        interests=list(data.get("interests") or []),
        tone=data.get("tone"),
        countries=list(data.get("countries") or []),
        extra=extra,
    )


def parse_ad_plan(raw: Any) -> Optional[AdPlan]:
    """Turn the LLM's production plan dict into an AdPlan; unknown keys go to extra."""
    raw = _json(raw)
    if not isinstance(raw, dict):
        return None
    data = snake_keys(raw)
    avatar = data.get("customer_avatar") or {}
    if not isinstance(avatar, dict):
        avatar = {}
    avatar = snake_keys(avatar)
    script = data.get("video_ad_script") or {}
    overall_tone = data.get("overall_tone") or (script.get("overall_tone") if isinstance(script, dict) else None)

    known = {"product_name", "ad_format", "target_platform", "customer_avatar", "overall_tone", "video_ad_script", "extra"}
    extra = {k: v for k, v in data.items() if k not in known}
    extra.update(data.get("extra") or {})

    return AdPlan(
        product_name=data.get("product_name") or "",
        ad_format=data.get("ad_format"),
        target_platform=data.get("target_platform"),
        customer_avatar=CustomerAvatar(
            name=avatar.get("name"),
            demographics=avatar.get("demographics"),
            backstory=avatar.get("backstory"),
            visual_description=avatar.get("visual_description") or "",
        ),
        overall_tone=overall_tone,
        extra=extra,
    )


def _candidates(raw: Any) -> list[CandidateImage]:
    out = []
    for position, entry in enumerate(_json(raw) or []):
        if isinstance(entry, str):
            entry = {"url": entry}
        if isinstance(entry, dict) and entry.get("url"):
            out.append(CandidateImage(id=int(entry.get("id", position + 1)), url=entry["url"]))
    return out


def _final_videos(raw: Any, legacy_url: Optional[str]) -> list[FinalVideo]:
    videos = []
    for entry in _json(raw) or []:
        if not isinstance(entry, dict):
            continue
        entry = snake_keys(entry)
        if not entry.get("url"):
            continue
        videos.append(FinalVideo(
            url=entry["url"],
            is_new=bool(entry.get("is_new", False)),
            created_at=_iso(entry.get("created_at")) or _now_iso(),
            scene_count=int(entry.get("scene_count") or 0),
        ))
    if not videos and legacy_url:
        videos = [FinalVideo(url=legacy_url, is_new=False, created_at=_now_iso(), scene_count=0)]
    return videos


def _step(value: Any) -> int:
    try:
        return max(0, min(4, int(value or 0)))
    except (TypeError, ValueError):
        return 0


def normalize_session_row(row: dict) -> Session:
    """Single entry point from a persisted row (either casing, any vintage) to a Session."""
    data = snake_keys(row)

    original = _json(data.get("scene_scripts")) or _json(data.get("scenes")) or []
    working = _json(data.get("scenes")) or []
    edited = _json(data.get("edited_scenes")) or []
    if edited:
        working = _merge_scene_lists(original, edited)

    scene_scripts = [normalize_scene(s, i) for i, s in enumerate(original) if isinstance(s, dict)]
    scenes = [normalize_scene(s, i) for i, s in enumerate(working) if isinstance(s, dict)]

    current_step = _step(data.get("current_step"))
    furthest_step = max(_step(data.get("furthest_step")), current_step)

    try:
        status = SessionStatus(data.get("status") or "draft")
    except ValueError:
        status = SessionStatus.DRAFT

    ad_plan = parse_ad_plan(data.get("ad_plan") or data.get("video_ad_output"))

    return Session(
        id=str(data["id"]),
        user_id=str(data.get("user_id") or ""),
        product_id=str(data.get("product_id") or ""),
        title=data.get("title") or "New Session",
        current_step=current_step,
        furthest_step=furthest_step,
        target_audience=_audience(data.get("target_audience") or data.get("target_demographic")),
        ad_plan=ad_plan,
        product_prompt=data.get("product_prompt") or "",
        product_breakdown=data.get("product_breakdown") or "",
        character_prompt=data.get("character_prompt") or "",
        scene_scripts=scene_scripts,
        scenes=scenes,
        generated_characters=_candidates(data.get("generated_characters")),
        selected_character=data.get("selected_character") or None,
        generated_product_images=_candidates(data.get("generated_product_images")),
        selected_product_image=data.get("selected_product_image") or None,
        status=status,
        video_url=data.get("video_url") or None,
        final_videos=_final_videos(
            data.get("final_videos") or data.get("stitched_videos"),
            data.get("video_url") or None,
        ),
        video_progress=max(0, min(100, int(data.get("video_progress") or 0))),
        assembly_stage=data.get("assembly_stage") or None,
        assembly_message=data.get("assembly_message"),
        assembly_error=data.get("assembly_error"),
        created_at=_iso(data.get("created_at")),
        updated_at=_iso(data.get("updated_at")),
    )


def session_to_row(session: Session) -> dict:
    """Flatten a Session into the snake_case row shape the stores persist."""
    return session.model_dump(mode="json")
