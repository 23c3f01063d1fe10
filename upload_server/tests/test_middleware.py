import pytest
from fastapi import HTTPException
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from upload_server.app.middleware import BodySizeLimitMiddleware


async def body_length_app(scope, receive, send):
    """Reads the whole body and answers with its length."""
    request = Request(scope, receive)
    body = await request.body()
    response = PlainTextResponse(str(len(body)))
    await response(scope, receive, send)


def make_scope(headers=None):
    return {
        "type": "http",
        "method": "POST",
        "path": "/upload",
        "query_string": b"",
        "headers": headers or [],
    }


def make_receive(chunks):
    messages = [
        {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
        for i, chunk in enumerate(chunks)
    ]

    async def receive():
        return messages.pop(0)

    return receive


class Collector:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    @property
    def status(self):
        return self.messages[0]["status"]

    @property
    def body(self):
        return b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        BodySizeLimitMiddleware(body_length_app, max_bytes=0)


@pytest.mark.asyncio
async def test_body_within_limit_passes_through():
    middleware = BodySizeLimitMiddleware(body_length_app, max_bytes=100)
    send = Collector()

    await middleware(make_scope(), make_receive([b"a" * 60, b"b" * 40]), send)

    assert send.status == 200
    assert send.body == b"100"


@pytest.mark.asyncio
async def test_declared_length_over_limit_rejected_before_reading():
    called = False

    async def app(scope, receive, send):
        nonlocal called
        called = True

    middleware = BodySizeLimitMiddleware(app, max_bytes=1024)
    send = Collector()

    await middleware(make_scope([(b"content-length", b"4096")]), make_receive([b""]), send)

    assert not called
    assert send.status == 413
    assert b"File too large. Maximum size is 1.0 KB" in send.body


@pytest.mark.asyncio
async def test_streamed_body_over_limit_aborts():
    middleware = BodySizeLimitMiddleware(body_length_app, max_bytes=100)

    with pytest.raises(HTTPException) as exc_info:
        await middleware(make_scope(), make_receive([b"a" * 60, b"b" * 60]), Collector())

    assert exc_info.value.status_code == 413
    assert exc_info.value.detail == "File too large. Maximum size is 100 B"


@pytest.mark.asyncio
async def test_non_http_scope_untouched():
    seen = []

    async def app(scope, receive, send):
        seen.append(scope["type"])

    middleware = BodySizeLimitMiddleware(app, max_bytes=1)
    await middleware({"type": "lifespan"}, None, None)

    assert seen == ["lifespan"]
