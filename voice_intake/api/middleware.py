"""
API Middleware.

Request correlation, upload size guard and per-client rate limiting
for the voice intake endpoints.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from voice_intake.config import get_settings
from voice_intake.logging_config import generate_trace_id, get_logger, trace_id_var

logger = get_logger(__name__)

# In-memory limiter; one bucket per client IP per process
_submissions: dict[str, list[float]] = defaultdict(list)
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 30     # voice submissions per window per IP

# Multipart overhead on top of the audio itself
UPLOAD_OVERHEAD_BYTES = 256 * 1024
UNLIMITED_PATHS = ("/health", "/docs", "/openapi.json")


def _json_error(message: str, status_code: int, headers: dict[str, str] | None = None) -> Response:
    return Response(
        content=f'{{"error": "{message}"}}',
        status_code=status_code,
        media_type="application/json",
        headers=headers,
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a trace id to the request context and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or generate_trace_id()
        token = trace_id_var.set(trace_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.monotonic() - start) * 1000, 1)
            response.headers["X-Request-ID"] = trace_id
            response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
            logger.info(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
                content_length=request.headers.get("content-length"),
            )
            return response
        finally:
            trace_id_var.reset(token)


class UploadSizeMiddleware(BaseHTTPMiddleware):
    """Reject oversized uploads from the Content-Length header before reading them."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length")
        if request.method == "POST" and declared and declared.isdigit():
            limit = get_settings().max_audio_bytes + UPLOAD_OVERHEAD_BYTES
            if int(declared) > limit:
                logger.warning("upload_too_large", path=request.url.path, bytes=int(declared), limit=limit)
                return _json_error("Audio upload too large", 413)
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window limit on voice submissions per client IP."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if request.method != "POST" or path.startswith(UNLIMITED_PATHS) or "/logs/" in path:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        recent = [t for t in _submissions[client_ip] if now - t < RATE_LIMIT_WINDOW]

        if len(recent) >= RATE_LIMIT_MAX:
            _submissions[client_ip] = recent
            logger.warning("rate_limit_exceeded", client_ip=client_ip, path=path)
            return _json_error(
                "Rate limit exceeded",
                429,
                headers={"Retry-After": str(RATE_LIMIT_WINDOW)},
            )

        recent.append(now)
        _submissions[client_ip] = recent
        return await call_next(request)
