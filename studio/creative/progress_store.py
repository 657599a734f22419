"""
Live assembly progress, keyed by session.

Stored as a Redis hash `stitch:progress:{session_id}` with a TTL so finished
entries expire on their own. Without REDIS_URL a process-local dict stands in
and entries are dropped after the same TTL.
"""

import os
import time
import threading
import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)

ASSEMBLY_PROGRESS_TTL = int(os.getenv("ASSEMBLY_PROGRESS_TTL", "60"))
KEY_PREFIX = "stitch:progress:"


def _key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


class MemoryProgressStore:
    def __init__(self, ttl: int = ASSEMBLY_PROGRESS_TTL):
        self._ttl = ttl
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[dict, Optional[float]]] = {}

    def set(self, session_id: str, data: dict, expire: bool = False):
        with self._lock:
            deadline = time.monotonic() + self._ttl if expire else None
            self._entries[session_id] = (dict(data), deadline)

    def get(self, session_id: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            data, deadline = entry
            if deadline is not None and time.monotonic() > deadline:
                del self._entries[session_id]
                return None
            return dict(data)

    def delete(self, session_id: str):
        with self._lock:
            self._entries.pop(session_id, None)


class RedisProgressStore:
    """Values are stored as strings; progress is parsed back to int on read."""

    def __init__(self, client: "redis.Redis", ttl: int = ASSEMBLY_PROGRESS_TTL):
        self._r = client
        self._ttl = ttl

    def set(self, session_id: str, data: dict, expire: bool = False):
        mapping = {k: "" if v is None else str(v) for k, v in data.items()}
        pipe = self._r.pipeline()
        pipe.delete(_key(session_id))
        pipe.hset(_key(session_id), mapping=mapping)
        if expire:
            pipe.expire(_key(session_id), self._ttl)
        pipe.execute()

    def get(self, session_id: str) -> Optional[dict]:
        raw = self._r.hgetall(_key(session_id))
        if not raw:
            return None
        data = {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in raw.items()
        }
        data = {k: (v or None) for k, v in data.items()}
        data["progress"] = int(data.get("progress") or 0)
        return data

    def delete(self, session_id: str):
        self._r.delete(_key(session_id))


# ── Lazy singleton ───────────────────────────────────────────────────────────

_progress_store = None


def get_progress_store():
    """Redis-backed when REDIS_URL is reachable, in-memory otherwise."""
    global _progress_store
    if _progress_store is None:
        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            client = redis.from_url(redis_url, decode_responses=False)
            try:
                client.ping()
                _progress_store = RedisProgressStore(client)
                logger.info(f"Redis connected: {redis_url[:30]}...")
            except Exception as e:
                logger.warning(f"Redis connection failed: {e} — keeping assembly progress in memory")
        if _progress_store is None:
            _progress_store = MemoryProgressStore()
    return _progress_store
