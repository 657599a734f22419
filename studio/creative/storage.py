"""
S3/R2 storage helpers for generated media.

All session assets are stored under:
  ugc/{session_id}/{filename}

Downloads go through httpx; uploads use boto3 against the R2 endpoint
(or any S3-compatible endpoint when S3_ENDPOINT_URL is set).
"""

import os
import base64
import asyncio
import logging
import time

import boto3
import httpx
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "")

_s3_client = None


def _get_s3():
    """Lazy-init the S3 client."""
    global _s3_client
    if _s3_client is None:
        endpoint = S3_ENDPOINT_URL or f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com"
        _s3_client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=R2_ACCESS_KEY_ID,
            aws_secret_access_key=R2_SECRET_ACCESS_KEY,
            config=BotoConfig(signature_version="s3v4"),
            region_name="auto",
        )
    return _s3_client


def is_configured() -> bool:
    return bool(R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY and R2_PUBLIC_URL)


# ── Helpers ──────────────────────────────────────────────────────────────────

def asset_key(session_id: str, name: str, ext: str) -> str:
    """Timestamped key so regenerations never overwrite an earlier variant."""
    return f"ugc/{session_id}/{name}-{int(time.time() * 1000)}.{ext}"


def public_url(key: str) -> str:
    return f"{R2_PUBLIC_URL.rstrip('/')}/{key}"


def extension_for(mime_type: str) -> str:
    subtype = (mime_type or "").split("/")[-1]
    return {"jpeg": "jpg", "quicktime": "mov"}.get(subtype, subtype or "bin")


def guess_mime(url: str) -> str:
    lower = url.lower()
    if ".png" in lower:
        return "image/png"
    if ".webp" in lower:
        return "image/webp"
    return "image/jpeg"


async def download_bytes(url: str) -> bytes:
    """Download a file from a public URL and return raw bytes."""
    async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.content


async def inline_image(url: str) -> dict:
    """Fetch an image and wrap it as a Gemini inlineData part."""
    data = await download_bytes(url)
    return {
        "inlineData": {
            "mimeType": guess_mime(url),
            "data": base64.b64encode(data).decode("utf-8"),
        }
    }


def put_object(key: str, data: bytes, content_type: str) -> str:
    """Blocking upload; returns the public URL of the object."""
    try:
        _get_s3().put_object(
            Bucket=R2_BUCKET_NAME,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
    except Exception as e:
        logger.error(f"R2 upload failed for key={key}: {e}")
        raise

    url = public_url(key)
    logger.info(f"Uploaded to R2: {url}")
    return url


async def upload_bytes(key: str, data: bytes, content_type: str = "image/png") -> str:
    return await asyncio.to_thread(put_object, key, data, content_type)


async def upload_session_asset(
    session_id: str, name: str, data: bytes, content_type: str = "image/png"
) -> str:
    """Upload a generated asset (character, product shot, scene image) for a session."""
    key = asset_key(session_id, name, extension_for(content_type))
    return await upload_bytes(key, data, content_type)


def upload_file(session_id: str, name: str, path: str, content_type: str = "video/mp4") -> str:
    """Blocking upload of a local file, used by the stitcher thread."""
    with open(path, "rb") as f:
        data = f.read()
    return put_object(asset_key(session_id, name, extension_for(content_type)), data, content_type)

