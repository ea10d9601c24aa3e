from __future__ import annotations

from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send


FORWARDABLE_SCHEMES = ("http", "https")


def forwarded_proto(headers: Headers) -> Optional[str]:
    raw = headers.get("x-forwarded-proto")
    if not raw:
        return None
    proto = raw.split(",")[0].strip().lower()
    return proto if proto in FORWARDABLE_SCHEMES else None


class ForwardedProtoMiddleware:
    """Honor ``X-Forwarded-Proto`` so absolute URLs match what the client used.

    Proxies that terminate TLS forward plain http; without this the paywall
    would advertise an ``http://`` resource URL.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            proto = forwarded_proto(Headers(scope=scope))
            if proto and proto != scope.get("scheme"):
                scope = dict(scope)
                scope["scheme"] = proto
        await self.app(scope, receive, send)
