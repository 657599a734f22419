"""
Session Store.

Durable home of the session document. Two backends share one contract:

  SupabaseSessionStore — table `ugc_sessions` via the service-role client
  InMemorySessionStore — process-local dicts, used when Supabase isn't configured

Writers that touch a single scene go through update_scene(), and
whole-session transforms go through mutate(). Both apply a pure function to
the latest stored copy while holding a per-session asyncio.Lock, so a
reconciler pass and a user edit can never overwrite each other's fields.
"""

import os
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from supabase import create_client, Client

from .errors import SessionNotFound, ValidationError
from .models import Scene, Session, SessionStatus
from .normalize import normalize_session_row, session_to_row

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "ugc_sessions"
PRODUCTS_TABLE = "products"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """Backend-agnostic read-modify-write on top of _read_row / _write_row."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Backend hooks ────────────────────────────────────────────────────

    async def _read_row(self, session_id: str) -> Optional[dict]:
        raise NotImplementedError

    async def _write_row(self, row: dict, insert: bool = False):
        raise NotImplementedError

    async def list(self, user_id: str, product_id: Optional[str] = None) -> list[Session]:
        raise NotImplementedError

    async def delete(self, session_id: str):
        raise NotImplementedError

    async def get_product(self, product_id: str) -> Optional[dict]:
        raise NotImplementedError

    # ── Contract ─────────────────────────────────────────────────────────

    async def create(self, user_id: str, product_id: str) -> Session:
        now = _now_iso()
        session = Session(
            id=str(uuid4()),
            user_id=user_id,
            product_id=product_id,
            status=SessionStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        await self._write_row(session_to_row(session), insert=True)
        logger.info(f"Session {session.id} created for user {user_id} (product {product_id})")
        return session

    async def get(self, session_id: str) -> Session:
        row = await self._read_row(session_id)
        if not row:
            raise SessionNotFound(session_id)
        return normalize_session_row(row)

    async def update(self, session_id: str, fields: dict) -> Session:
        """Partial update of top-level fields; values must already be model-typed."""
        return await self.mutate(session_id, lambda s: s.model_copy(update=fields))

    async def mutate(self, session_id: str, fn: Callable[[Session], Session]) -> Session:
        async with self._locks[session_id]:
            current = await self.get(session_id)
            updated = fn(current)
            if updated == current:
                return current
            updated = updated.model_copy(update={"updated_at": _now_iso()})
            await self._write_row(session_to_row(updated))
            return updated

    async def update_scene(
        self, session_id: str, index: int, fn: Callable[[Scene], Scene]
    ) -> Scene:
        async with self._locks[session_id]:
            current = await self.get(session_id)
            if index < 0 or index >= len(current.scenes):
                raise ValidationError(
                    f"Invalid scene index {index}. Session has {len(current.scenes)} scene(s)"
                )
            scene = current.scenes[index]
            updated = fn(scene)
            if updated == scene:
                return scene
            scenes = list(current.scenes)
            scenes[index] = updated
            await self._write_row(session_to_row(current.model_copy(update={
                "scenes": scenes,
                "updated_at": _now_iso(),
            })))
            return updated

    def forget_lock(self, session_id: str):
        self._locks.pop(session_id, None)


# ═════════════════════════════════════════════════════════════════════════════
# In-memory backend
# ═════════════════════════════════════════════════════════════════════════════

class InMemorySessionStore(SessionStore):
    """Rows kept as plain dicts so every read goes through normalization."""

    def __init__(self, products: Optional[dict[str, dict]] = None):
        super().__init__()
        self._rows: dict[str, dict] = {}
        self._products: dict[str, dict] = dict(products or {})

    def add_product(self, product: dict):
        self._products[str(product["id"])] = product

    def put_row(self, row: dict):
        """Seed a raw (possibly legacy-shaped) row."""
        self._rows[str(row["id"])] = dict(row)

    async def _read_row(self, session_id: str) -> Optional[dict]:
        row = self._rows.get(session_id)
        return dict(row) if row else None

    async def _write_row(self, row: dict, insert: bool = False):
        self._rows[row["id"]] = row

    async def list(self, user_id: str, product_id: Optional[str] = None) -> list[Session]:
        sessions = [
            normalize_session_row(row)
            for row in self._rows.values()
            if str(row.get("user_id")) == user_id
            and (product_id is None or str(row.get("product_id")) == product_id)
        ]
        return sorted(sessions, key=lambda s: s.created_at or "", reverse=True)

    async def delete(self, session_id: str):
        self._rows.pop(session_id, None)
        self.forget_lock(session_id)

    async def get_product(self, product_id: str) -> Optional[dict]:
        return self._products.get(product_id)


# ═════════════════════════════════════════════════════════════════════════════
# Supabase backend
# ═════════════════════════════════════════════════════════════════════════════

_service_client: Optional[Client] = None


def _get_service_client() -> Client:
    """Lazy-init Supabase client using service role key."""
    global _service_client
    if _service_client is None:
        url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _service_client = create_client(url, key)
    return _service_client


def supabase_configured() -> bool:
    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
    return bool(url and os.getenv("SUPABASE_SERVICE_ROLE_KEY"))


class SupabaseSessionStore(SessionStore):
    def __init__(self, client: Optional[Client] = None):
        super().__init__()
        self._client = client

    @property
    def sb(self) -> Client:
        return self._client or _get_service_client()

    async def _read_row(self, session_id: str) -> Optional[dict]:
        result = (
            self.sb.table(SESSIONS_TABLE)
            .select("*")
            .eq("id", session_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def _write_row(self, row: dict, insert: bool = False):
        if insert:
            self.sb.table(SESSIONS_TABLE).insert(row).execute()
        else:
            self.sb.table(SESSIONS_TABLE).update(row).eq("id", row["id"]).execute()

    async def list(self, user_id: str, product_id: Optional[str] = None) -> list[Session]:
        query = self.sb.table(SESSIONS_TABLE).select("*").eq("user_id", user_id)
        if product_id:
            query = query.eq("product_id", product_id)
        result = query.order("created_at", desc=True).execute()
        return [normalize_session_row(row) for row in result.data]

    async def delete(self, session_id: str):
        self.sb.table(SESSIONS_TABLE).delete().eq("id", session_id).execute()
        self.forget_lock(session_id)

    async def get_product(self, product_id: str) -> Optional[dict]:
        result = (
            self.sb.table(PRODUCTS_TABLE)
            .select("*")
            .eq("id", product_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None


# ── Process singleton ────────────────────────────────────────────────────────

_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        if supabase_configured():
            _store = SupabaseSessionStore()
            logger.info("Session store: Supabase")
        else:
            _store = InMemorySessionStore()
            logger.warning("Supabase not configured — sessions are kept in memory only")
    return _store
