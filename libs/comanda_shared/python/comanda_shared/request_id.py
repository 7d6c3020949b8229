from __future__ import annotations

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Ids from the POS client end up in log lines and upstream headers.
_VALID_RID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_rid_ctx: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Request id of the current context; outside a request a fresh one is minted."""
    rid = _rid_ctx.get()
    if not rid:
        rid = uuid.uuid4().hex
        _rid_ctx.set(rid)
    return rid


def accept_request_id(raw: str | None) -> str:
    if raw and _VALID_RID.match(raw):
        return raw
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id for the duration of each request: the caller's, if it
    is a sane token, otherwise a new one. The id is echoed on the response so
    the POS client can quote it when reporting a pricing problem.
    """

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next):
        rid = accept_request_id(request.headers.get(self.header_name))
        token = _rid_ctx.set(rid)
        try:
            response: Response = await call_next(request)
        finally:
            _rid_ctx.reset(token)
        response.headers[self.header_name] = rid
        return response
