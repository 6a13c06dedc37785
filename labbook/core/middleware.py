import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .actor import build_actor

logger = structlog.get_logger("labbook.middleware")


def actor_context(headers) -> dict:
    """Log fields naming the caller, resolved the same way the API resolves it."""
    actor = build_actor(headers.get("X-Actor-Name"), headers.get("X-Actor-Role"))
    fields = {"actor": actor.label, "actor_role": actor.role}
    if not actor.is_admin and actor.key:
        fields["actor_worker_key"] = actor.key
    return fields


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Binds request id and caller into every log line of the request.

    Booking, leave and remarks events logged by the engine then carry who
    asked for them without each call site passing the actor to the logger.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            **actor_context(request.headers),
        )

        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        if response.status_code >= 500:
            logger.error("request_finished", status=response.status_code, duration_ms=elapsed_ms)
        elif response.status_code in (403, 409):
            # Refused bookings and permission denials are worth seeing at info
            # level with the caller attached.
            logger.info("request_refused", status=response.status_code, duration_ms=elapsed_ms)
        else:
            logger.info("request_finished", status=response.status_code, duration_ms=elapsed_ms)
        return response
