"""API key authentication middleware.

When STRATUS_API_KEY is set, every /api/* endpoint requires either
  Authorization: Bearer <api_key>
or
  X-API-Key: <api_key>

/health and the OpenAPI docs stay open.
"""

from __future__ import annotations

import hmac

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from ..config import settings


def _presented_key(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):]
    return request.headers.get("X-API-Key", "")


class ApiKeyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_key: str | None = None) -> None:  # noqa: ANN001
        super().__init__(app)
        self._api_key = api_key if api_key is not None else settings.api_key

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._api_key or not request.url.path.startswith("/api"):
            return await call_next(request)

        if hmac.compare_digest(_presented_key(request), self._api_key):
            return await call_next(request)

        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})
