"""FastAPI middleware for request tracking and provenance logging.

Provides:
- Request ID generation and injection (X-Request-ID)
- A context variable carrying request metadata for log lines
- A bounded in-memory store of per-request traces (strategy, model version, latency)
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from contextvars import ContextVar
from threading import Lock
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("request_context", default=None)

MAX_TRACES = 1000

logger = logging.getLogger(__name__)


class TraceStore:
    """LRU store of the last ``max_traces`` request traces."""

    def __init__(self, max_traces: int = MAX_TRACES):
        self.max_traces = max_traces
        self._lock = Lock()
        self._traces: OrderedDict[str, Dict[str, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._traces)

    def put(self, request_id: str, trace_data: Dict[str, Any]) -> None:
        with self._lock:
            self._traces[request_id] = {**trace_data, "stored_at": time.time()}
            self._traces.move_to_end(request_id)
            while len(self._traces) > self.max_traces:
                self._traces.popitem(last=False)

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._traces.get(request_id)

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a request_id into every request and response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        token = _request_context.set({
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "timestamp": time.time(),
        })
        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            _request_context.reset(token)
        latency = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} {response.status_code} {latency*1000:.2f}ms",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "latency_ms": latency * 1000,
            },
        )
        return response


def get_request_context() -> Dict[str, Any]:
    return _request_context.get() or {}


def get_request_id() -> Optional[str]:
    return get_request_context().get("request_id")
