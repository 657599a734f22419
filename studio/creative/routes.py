"""
FastAPI routes for the creative studio.

Session Endpoints:
  GET    /ugc/demographics                          — audience options
  POST   /ugc/sessions                              — create session for a product
  GET    /ugc/sessions                              — list user's sessions
  GET    /ugc/sessions/{id}                         — get / resume session
  PATCH  /ugc/sessions/{id}                         — rename
  DELETE /ugc/sessions/{id}                         — delete (stops background work)
  PUT    /ugc/sessions/{id}/step                    — navigate to a reached step

Step Endpoints:
  PUT    /ugc/sessions/{id}/demographics            — Step 0: audience → production plan
  POST   /ugc/sessions/{id}/generate-characters     — Step 1: 4 character options
  PUT    /ugc/sessions/{id}/select-character
  POST   /ugc/sessions/{id}/generate-product-images — Step 2: 4 product-shot options
  PUT    /ugc/sessions/{id}/select-product-image
  PUT    /ugc/sessions/{id}/scenes                  — Step 3: edit / reorder scenes
  PUT    /ugc/sessions/{id}/scenes/{index}/select   — pick an image/video variant
  POST   /ugc/sessions/{id}/scenes/{index}/generate-image
  POST   /ugc/sessions/{id}/scenes/{index}/generate-video
  POST   /ugc/sessions/{id}/generate-all-scene-videos
  GET    /ugc/sessions/{id}/scene-video-status
  POST   /ugc/sessions/{id}/generate-video          — Step 4: stitch final video
  GET    /ugc/sessions/{id}/progress

Pending Edits:
  POST   /ugc/sessions/{id}/edits/{edit_id}/confirm — apply edit, discarding later steps
  POST   /ugc/sessions/{id}/edits/{edit_id}/cancel

Edits to an earlier step than the furthest reached answer 202 with a
pending_edit_id instead of changing anything.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from .errors import ConfirmationRequired, DispatchFailure, SessionNotFound
from .models import (
    AudienceRequest,
    NavigateRequest,
    ScenesUpdateRequest,
    SelectCharacterRequest,
    SelectMediaRequest,
    SelectProductImageRequest,
    SessionCreateRequest,
    SessionRenameRequest,
)
from .session_service import SessionService, get_session_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ugc", tags=["ugc"])


def get_service() -> SessionService:
    return get_session_service()


def current_user_id(request: Request) -> Optional[str]:
    """Set by UserContextMiddleware; None only in development mode."""
    return getattr(request.state, "user_id", None)


def _error_response(e: Exception, action: str) -> JSONResponse:
    if isinstance(e, ConfirmationRequired):
        return JSONResponse(status_code=202, content={
            "status": "confirmation_required",
            "pending_edit_id": e.pending_edit_id,
            "target_step": e.target_step,
            "furthest_step": e.furthest_step,
            "detail": str(e),
        })
    if isinstance(e, SessionNotFound):
        code = 404
    elif isinstance(e, PermissionError):
        code = 403
    elif isinstance(e, ValueError):
        code = 400
    elif isinstance(e, DispatchFailure):
        logger.error(f"{action} failed: {e}")
        code = 502
    else:
        logger.error(f"{action} failed: {e}", exc_info=True)
        code = 500
    return JSONResponse(status_code=code, content={"detail": str(e)})


# ═════════════════════════════════════════════════════════════════════════════
# Sessions
# ═════════════════════════════════════════════════════════════════════════════

@router.get("/demographics")
async def demographics():
    return SessionService.demographic_options()


@router.post("/sessions")
async def create_session(
    request: SessionCreateRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.create_session(user_id or "", request.product_id)
    except Exception as e:
        return _error_response(e, "Create session")


@router.get("/sessions")
async def list_sessions(
    product_id: Optional[str] = Query(None),
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.list_sessions(user_id or "", product_id)
    except Exception as e:
        return _error_response(e, "List sessions")


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.get_session(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Get session")


@router.patch("/sessions/{session_id}")
async def rename_session(
    session_id: str,
    request: SessionRenameRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.rename_session(session_id, user_id, request.title)
    except Exception as e:
        return _error_response(e, "Rename session")


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        await service.delete_session(session_id, user_id)
        return {"status": "deleted", "session_id": session_id}
    except Exception as e:
        return _error_response(e, "Delete session")


@router.put("/sessions/{session_id}/step")
async def navigate(
    session_id: str,
    request: NavigateRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.navigate(session_id, user_id, request.step)
    except Exception as e:
        return _error_response(e, "Navigate")


# ═════════════════════════════════════════════════════════════════════════════
# Steps 0–2
# ═════════════════════════════════════════════════════════════════════════════

@router.put("/sessions/{session_id}/demographics")
async def submit_audience(
    session_id: str,
    request: AudienceRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.submit_audience(session_id, user_id, request.target_audience)
    except Exception as e:
        return _error_response(e, "Submit audience")


@router.post("/sessions/{session_id}/generate-characters")
async def generate_characters(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_characters(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Generate characters")


@router.put("/sessions/{session_id}/select-character")
async def select_character(
    session_id: str,
    request: SelectCharacterRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.select_character(session_id, user_id, request.character_url)
    except Exception as e:
        return _error_response(e, "Select character")


@router.post("/sessions/{session_id}/generate-product-images")
async def generate_product_images(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_product_images(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Generate product images")


@router.put("/sessions/{session_id}/select-product-image")
async def select_product_image(
    session_id: str,
    request: SelectProductImageRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.select_product_image(session_id, user_id, request.image_url)
    except Exception as e:
        return _error_response(e, "Select product image")


# ═════════════════════════════════════════════════════════════════════════════
# Step 3 — Scenes
# ═════════════════════════════════════════════════════════════════════════════

@router.put("/sessions/{session_id}/scenes")
async def update_scenes(
    session_id: str,
    request: ScenesUpdateRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.update_scenes(session_id, user_id, request.scenes)
    except Exception as e:
        return _error_response(e, "Update scenes")


@router.put("/sessions/{session_id}/scenes/{index}/select")
async def select_scene_media(
    session_id: str,
    index: int,
    request: SelectMediaRequest,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.select_scene_media(
            session_id, user_id, index, request.kind, request.variant_index
        )
    except Exception as e:
        return _error_response(e, "Select scene media")


@router.post("/sessions/{session_id}/scenes/{index}/generate-image")
async def generate_scene_image(
    session_id: str,
    index: int,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_scene_image(session_id, user_id, index)
    except Exception as e:
        return _error_response(e, "Generate scene image")


@router.post("/sessions/{session_id}/scenes/{index}/generate-video")
async def generate_scene_video(
    session_id: str,
    index: int,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_scene_video(session_id, user_id, index)
    except Exception as e:
        return _error_response(e, "Generate scene video")


@router.post("/sessions/{session_id}/generate-all-scene-videos")
async def generate_all_scene_videos(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_all_scene_videos(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Generate all scene videos")


@router.get("/sessions/{session_id}/scene-video-status")
async def scene_video_status(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return {"scenes": await service.scene_status(session_id, user_id)}
    except Exception as e:
        return _error_response(e, "Scene status")


# ═════════════════════════════════════════════════════════════════════════════
# Step 4 — Final video
# ═════════════════════════════════════════════════════════════════════════════

@router.post("/sessions/{session_id}/generate-video")
async def generate_video(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.generate_video(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Generate video")


@router.get("/sessions/{session_id}/progress")
async def progress(
    session_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        return await service.progress(session_id, user_id)
    except Exception as e:
        return _error_response(e, "Progress")


# ═════════════════════════════════════════════════════════════════════════════
# Pending edits
# ═════════════════════════════════════════════════════════════════════════════

@router.post("/sessions/{session_id}/edits/{edit_id}/confirm")
async def confirm_edit(
    session_id: str,
    edit_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        result = await service.confirm_edit(session_id, user_id, edit_id)
        return {"status": "confirmed", "result": result}
    except Exception as e:
        return _error_response(e, "Confirm edit")


@router.post("/sessions/{session_id}/edits/{edit_id}/cancel")
async def cancel_edit(
    session_id: str,
    edit_id: str,
    user_id: Optional[str] = Depends(current_user_id),
    service: SessionService = Depends(get_service),
):
    try:
        session = await service.cancel_edit(session_id, user_id, edit_id)
        return {"status": "cancelled", "session": session}
    except Exception as e:
        return _error_response(e, "Cancel edit")
