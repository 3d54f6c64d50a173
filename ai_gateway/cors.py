"""
CORS Middleware for the AI Gateway

Browser clients call the gateway directly, so:
- OPTIONS is answered with 204 before routing or auth
- Cross-origin responses (JSON, errors, SSE) echo the caller's Origin
"""

from typing import Sequence, Dict

from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import Headers
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from config.logging_config import get_logger

logger = get_logger(__name__)

ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
ALLOW_METHODS = ["GET", "POST", "OPTIONS"]
PREFLIGHT_MAX_AGE = 86400

# Headers of the base PlainTextResponse that a 204 must not carry
_BODY_HEADERS = ("content-length", "content-type")


class GatewayCORSMiddleware(CORSMiddleware):
    """Starlette CORS with origin echoing and a 204 preflight."""

    def __init__(self, app: ASGIApp, allow_origins: Sequence[str] = ("*",)):
        """
        Args:
            app: FastAPI/Starlette app
            allow_origins: Allowed origins; "*" echoes any caller origin
        """
        allow_any = "*" in allow_origins
        super().__init__(
            app,
            allow_origins=[] if allow_any else list(allow_origins),
            allow_origin_regex=".*" if allow_any else None,
            allow_methods=ALLOW_METHODS,
            allow_headers=ALLOW_HEADERS,
            max_age=PREFLIGHT_MAX_AGE,
        )
        logger.info(f"CORS middleware initialized (origins={list(allow_origins)})")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "OPTIONS":
            headers = Headers(scope=scope)
            # Starlette only treats OPTIONS with these two headers as a preflight
            if "origin" not in headers or "access-control-request-method" not in headers:
                response = Response(status_code=204, headers=self._bare_preflight_headers(headers))
                await response(scope, receive, send)
                return

        await super().__call__(scope, receive, send)

    def _bare_preflight_headers(self, request_headers: Headers) -> Dict[str, str]:
        headers = dict(self.preflight_headers)
        origin = request_headers.get("origin")
        if origin and self.is_allowed_origin(origin=origin):
            headers["Access-Control-Allow-Origin"] = origin
        return headers

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response

        headers = {
            name: value for name, value in response.headers.items()
            if name not in _BODY_HEADERS
        }
        return Response(status_code=204, headers=headers)
