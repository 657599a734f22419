"""
Kie.ai Veo client for scene video generation.

Every scene video is rendered in REFERENCE_2_VIDEO mode from the scene's
selected image. All calls retry on 429 / 5xx with exponential backoff.
"""

import os
import time
import random
import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

KIE_API_KEY = os.environ.get("KIE_API_KEY", "")
KIE_API_BASE = os.environ.get("KIE_API_BASE", "https://api.kie.ai/api/v1")
KIE_VIDEO_MODEL = os.environ.get("KIE_VIDEO_MODEL", "veo3_fast")

# ── Retry configuration ──────────────────────────────────────────────────────
MAX_RETRIES = 5
BASE_DELAY = 2.0       # seconds, doubled on each retry
JITTER_MAX = 1.0        # random jitter 0–1s added to each delay
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

COMPLETED_STATUSES = {"SUCCESS", "success"}
FAILED_STATUSES = {"GENERATE_FAILED", "CREATE_TASK_FAILED", "SENSITIVE_WORD_ERROR", "fail"}
QUEUED_STATUSES = {"PENDING", "queuing", "waiting"}


def _request_with_backoff(method: str, url: str, **kwargs) -> requests.Response:
    """
    Make an HTTP request with exponential backoff on retryable errors (429, 5xx).

    Uses: base_delay * 2^attempt + random jitter
    Max retries: 5 → delays of ~2s, 4s, 8s, 16s, 32s
    """
    headers = kwargs.pop("headers", {})
    headers.setdefault("Authorization", f"Bearer {KIE_API_KEY}")
    kwargs.setdefault("timeout", 60)

    for attempt in range(MAX_RETRIES + 1):
        try:
            response = requests.request(method, url, headers=headers, **kwargs)
        except requests.exceptions.RequestException as e:
            if attempt >= MAX_RETRIES:
                raise
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)
            logger.warning(
                f"Kie.ai request error on attempt {attempt + 1}/{MAX_RETRIES + 1}: {e} "
                f"— retrying in {delay:.1f}s"
            )
            time.sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES:
            response.raise_for_status()
            return response

        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            delay = int(retry_after)
        else:
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)

        logger.warning(
            f"Kie.ai {response.status_code} on attempt {attempt + 1}/{MAX_RETRIES + 1} "
            f"— retrying in {delay:.1f}s (url={url})"
        )
        if attempt >= MAX_RETRIES:
            response.raise_for_status()
        time.sleep(delay)

    raise RuntimeError(f"Request to {url} failed after {MAX_RETRIES + 1} attempts")


def submit_scene_video(prompt: str, image_url: str, aspect_ratio: str = "9:16") -> str:
    """
    Start a Veo render for one scene and return the provider task id.

    Raises RuntimeError when Kie.ai accepts the request but returns no task id.
    """
    url = f"{KIE_API_BASE}/veo/generate"
    payload = {
        "prompt": prompt,
        "model": KIE_VIDEO_MODEL,
        "mode": "REFERENCE_2_VIDEO",
        "imageUrls": [image_url],
        "aspectRatio": aspect_ratio,
    }

    logger.info(f"Kie.ai request to {url}: model={KIE_VIDEO_MODEL}, mode=REFERENCE_2_VIDEO")
    body = _request_with_backoff("POST", url, json=payload).json()

    data = body.get("data") if isinstance(body, dict) else None
    task_id = data.get("taskId") if isinstance(data, dict) else None
    if not task_id:
        msg = body.get("msg") if isinstance(body, dict) else None
        raise RuntimeError(f"Kie.ai returned no task id: {msg or body}")
    return task_id


def get_task_status(task_id: str) -> dict:
    """Fetch the raw record-info payload for a Veo task."""
    url = f"{KIE_API_BASE}/veo/record-info"
    logger.info(f"Polling status at {url}?taskId={task_id}")
    return _request_with_backoff("GET", url, params={"taskId": task_id}).json()


# ── Status normalization ─────────────────────────────────────────────────────

@dataclass
class ProviderStatus:
    status: str                 # queued | generating | completed | failed
    progress: int = 0
    video_url: Optional[str] = None
    error: Optional[str] = None


def _find_video_url(data: dict) -> Optional[str]:
    # Kie.ai may use "results" or "works" arrays, or a nested response.resultUrls
    results = data.get("results") or data.get("works") or []
    if results and isinstance(results, list) and isinstance(results[0], dict):
        first = results[0]
        url = first.get("url") or first.get("videoUrl") or first.get("video_url")
        if url:
            return url

    response = data.get("response")
    if isinstance(response, dict):
        urls = response.get("resultUrls") or []
        if urls:
            return urls[0]

    return data.get("videoUrl") or data.get("url") or data.get("video_url")


def parse_task_status(payload: dict) -> ProviderStatus:
    """
    Map a Kie.ai record-info payload onto our four job states.

    Kie.ai uses two indicators:
      1. data.status = "SUCCESS" / "GENERATING" / "PENDING" / "GENERATE_FAILED"
      2. Veo's data.successFlag = 0 (generating), 1 (success), 2/3 (failed)
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        data = {}

    raw_status = data.get("status") or ""
    success_flag = data.get("successFlag")
    try:
        progress = int(float(data.get("progress") or 0))
    except (TypeError, ValueError):
        progress = 0
    progress = max(0, min(100, progress))

    if raw_status in COMPLETED_STATUSES or success_flag == 1:
        url = _find_video_url(data)
        if not url:
            return ProviderStatus("failed", progress, error="Completed but no video URL found")
        return ProviderStatus("completed", 100, video_url=url)

    if raw_status in FAILED_STATUSES or success_flag in (2, 3):
        error = data.get("errorMessage") or data.get("error") or data.get("failReason")
        error = error or payload.get("msg") or "Unknown error"
        return ProviderStatus("failed", progress, error=str(error))

    if raw_status in QUEUED_STATUSES:
        return ProviderStatus("queued", progress)

    return ProviderStatus("generating", progress)
