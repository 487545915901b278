# core/middleware.py
from __future__ import annotations

import uuid
from contextvars import ContextVar

_request_id: ContextVar[str] = ContextVar("request_id", default="")


def current_request_id() -> str:
    """Request id of the HTTP request being served, or "" outside a request."""
    return _request_id.get()


class RequestIDMiddleware:
    """Attach a request ID and echo it back in the response as X-Request-ID.

    The id is also published through a context variable so audit rows written
    deep inside the payments pipeline can be tied back to the gateway call.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        rid = request.META.get("HTTP_X_REQUEST_ID") or uuid.uuid4().hex
        request.request_id = rid
        token = _request_id.set(rid)
        try:
            resp = self.get_response(request)
        finally:
            _request_id.reset(token)
        resp.headers["X-Request-ID"] = rid
        return resp
