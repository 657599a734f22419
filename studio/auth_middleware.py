"""
User context middleware for the studio API.

Every /ugc/* request must carry an X-User-Id header, set by the web app after
it has authenticated the user. The id is exposed to routes as
request.state.user_id and used for session ownership checks.
"""

import os
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

DEV_USER_ID = os.environ.get("STUDIO_DEV_USER_ID", "")


def _require_user() -> bool:
    flag = os.environ.get("STUDIO_REQUIRE_USER")
    if flag is not None:
        return flag.lower() in ("1", "true", "yes")
    return os.environ.get("ENVIRONMENT", "development") != "development"


class UserContextMiddleware(BaseHTTPMiddleware):
    """Attach the caller's user id; reject anonymous /ugc/* calls outside development."""

    # Paths that are always public (health checks, etc.)
    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        request.state.user_id = request.headers.get("X-User-Id", "").strip() or None

        if path in self.PUBLIC_PATHS or not path.startswith("/ugc"):
            return await call_next(request)

        if request.state.user_id is None:
            # In development without a user header, fall back to the dev user
            if not _require_user():
                request.state.user_id = DEV_USER_ID or None
                return await call_next(request)
            return JSONResponse(status_code=401, content={"detail": "Missing X-User-Id header"})

        return await call_next(request)
