"""Request body size limit middleware.

Rejects oversized bodies with 413 before they reach a route, whether the size
is announced by Content-Length or only discovered while streaming a chunked
body.
"""

import json

from starlette.types import Message, Receive, Scope, Send

from dreamjournal.app.core.logging import get_logger

logger = get_logger(__name__)


class BodyTooLargeError(Exception):
    """Raised when a streamed request body exceeds the limit."""


class SizeLimitedReceive:
    """Wraps an ASGI receive callable and counts body bytes as they arrive."""

    def __init__(self, receive: Receive, max_size: int):
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def __call__(self) -> Message:
        message = await self._receive()
        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise BodyTooLargeError(
                    f"Request body exceeds {self._max_size} bytes"
                )
        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware returning ``{error: "Request too large", message}``.

    Usage:
        app.add_middleware(RequestSizeLimitMiddleware, max_body_size=1024 * 1024)
    """

    def __init__(self, app, max_body_size: int = 1024 * 1024):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = None
        for name, value in scope.get("headers", []):
            if name.lower() == b"content-length":
                content_length = value.decode("latin-1")
                break

        if content_length:
            try:
                if int(content_length) > self.max_body_size:
                    await self._send_413_response(send)
                    return
            except ValueError:
                # Fall through to the streaming check
                pass

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(
                scope, SizeLimitedReceive(receive, self.max_body_size), tracking_send
            )
        except BodyTooLargeError:
            logger.info(f"Rejected streamed body over {self.max_body_size} bytes")
            if not response_started:
                await self._send_413_response(send)

    async def _send_413_response(self, send: Send) -> None:
        body = json.dumps({
            "error": "Request too large",
            "message": f"Request body must not exceed {self.max_body_size} bytes",
        }).encode("utf-8")

        await send(
            {
                "type": "http.response.start",
                "status": 413,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
