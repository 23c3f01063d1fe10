from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from upload_server.formatting import format_bytes
from upload_server.logger_config import setup_logger

logger = setup_logger()


class BodySizeLimitMiddleware:
    """Bound request bodies to ``max_bytes`` before the form is parsed.

    Requests announcing a larger Content-Length are answered with 413 without
    reading the body. Anything else is counted while it streams in, and the
    first chunk past the limit raises a 413 HTTPException from ``receive``.
    """

    def __init__(self, app: ASGIApp, max_bytes: int):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.app = app
        self.max_bytes = max_bytes

    @property
    def detail(self) -> str:
        return f"File too large. Maximum size is {format_bytes(self.max_bytes)}"

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        content_length = headers.get(b"content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                declared = None
            if declared is not None and declared > self.max_bytes:
                logger.warning(f"Rejected {scope['path']}: Content-Length {declared} exceeds {self.max_bytes} bytes")
                response = JSONResponse({"detail": self.detail}, status_code=413)
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    logger.warning(f"Aborted {scope['path']}: body exceeded {self.max_bytes} bytes")
                    raise HTTPException(status_code=413, detail=self.detail)
            return message

        await self.app(scope, limited_receive, send)
