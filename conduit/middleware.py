"""
Per-request diagnostics: SQL statement counting and response timing.

Feed endpoints promise a fixed query budget (one look-ahead SELECT, plus
three flag lookups when a viewer is known).  The counter below makes that
budget observable on every response through ``X-Query-Count``.
"""
import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from conduit.config import settings

logger = logging.getLogger(__name__)

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine: AsyncEngine) -> None:
    """Count every statement *engine* sends to the database in ``query_count_var``."""

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _count(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


class DiagnosticsMiddleware:
    """
    Pure ASGI middleware (``BaseHTTPMiddleware`` would run the endpoint in a
    copied context and hide the counter updates).

    Adds ``X-Response-Time-Ms`` and ``X-Query-Count`` to every HTTP response
    and logs one line per request, at WARNING once it is slower than
    ``SLOW_REQUEST_MS``.
    """

    def __init__(self, app: ASGIApp, slow_ms: float | None = None) -> None:
        self.app = app
        self.slow_ms = settings.SLOW_REQUEST_MS if slow_ms is None else slow_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        token = query_count_var.set(0)
        started = time.perf_counter()

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                elapsed = round((time.perf_counter() - started) * 1000, 2)
                queries = query_count_var.get()
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-response-time-ms", str(elapsed).encode()),
                    (b"x-query-count", str(queries).encode()),
                ]
                level = logging.WARNING if elapsed > self.slow_ms else logging.INFO
                logger.log(
                    level,
                    "%s %s -> %s in %sms (%d queries)",
                    scope["method"], scope["path"], message["status"], elapsed, queries,
                )
            await send(message)

        try:
            await self.app(scope, receive, send_with_headers)
        finally:
            query_count_var.reset(token)
