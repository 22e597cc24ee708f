"""
Request correlation.

Every request gets an x-request-id (client supplied when well formed,
generated otherwise) that is bound to the logging context for the duration
of the request and echoed on the response. Completion is logged once per
request, tagged with the memorial id for /pets/{pet_id}/... routes.
"""

import re
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from petmemorial.core.logging import latency_bucket_ms, log_event, request_id_ctx_var

# Client ids end up in logs and error bodies; keep them short and printable
_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming: Optional[str]) -> str:
    """Use the client's id when it is well formed, otherwise mint one."""
    if incoming and _CLIENT_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid4())


def _pet_id_from(request: Request) -> Optional[str]:
    path_params = request.scope.get("path_params") or {}
    return path_params.get("pet_id")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request_id to each request and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = resolve_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[self.header_name] = rid
            status = response.status_code
            log_event(
                "warning" if status >= 500 else "info",
                "request.complete",
                request_id=rid,
                pet_id=_pet_id_from(request),
                event_type="http.request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status": status,
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - start) * 1000),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
