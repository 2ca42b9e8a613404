"""Tests for siteassets.ingest.fetch.

Covers:
- request headers and content-type normalisation
- content-type allow-list
- byte cap via Content-Length and while streaming
- redirects: followed, re-checked by the fetch guard, bounded
- status mapping: transient versus fatal
- time bound and transport errors
- URLs the HTTP client cannot parse
"""

from __future__ import annotations

import asyncio
import dataclasses

import httpx
import pytest

from siteassets.errors import (
    ErrorCode,
    FetchError,
    FetchTimeoutError,
    ImageSizeError,
    ImageTypeError,
    InvalidInputError,
    TransientIOError,
    UnsafeUrlError,
)
from siteassets.ingest import fetch_image
from siteassets.ingest.fetch import MAX_REDIRECTS

PNG_BODY = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def image_response(body: bytes = PNG_BODY, content_type: str = "image/png") -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": content_type})


class TestSuccess:

    async def test_returns_body_and_type(self, config):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return image_response(content_type="Image/PNG; charset=binary")

        async with client_for(handler) as client:
            data, content_type = await fetch_image(client, "https://cdn.example.com/a.png", config)

        assert data == PNG_BODY
        assert content_type == "image/png"
        assert seen[0].headers["user-agent"] == config.fetch_user_agent
        assert seen[0].headers["accept"] == "image/*"

    async def test_jpg_alias_normalised(self, config):
        async with client_for(lambda r: image_response(content_type="image/jpg")) as client:
            _, content_type = await fetch_image(client, "https://cdn.example.com/a.jpg", config)
        assert content_type == "image/jpeg"

    async def test_store_credentials_not_sent(self, config):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return image_response()

        async with client_for(handler) as client:
            await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert "authorization" not in seen[0].headers
        assert "apikey" not in seen[0].headers


class TestContentType:

    @pytest.mark.parametrize("content_type", ["text/html", "image/svg+xml", "application/octet-stream"])
    async def test_rejected(self, config, content_type):
        async with client_for(lambda r: image_response(content_type=content_type)) as client:
            with pytest.raises(ImageTypeError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert exc_info.value.code == ErrorCode.IMAGE_TYPE_ERROR

    async def test_missing(self, config):
        async with client_for(lambda r: httpx.Response(200, content=PNG_BODY)) as client:
            with pytest.raises(ImageTypeError):
                await fetch_image(client, "https://cdn.example.com/a.png", config)


class TestByteCap:

    async def test_declared_length_over_cap(self, config):
        cfg = dataclasses.replace(config, fetch_max_bytes=10)
        async with client_for(lambda r: image_response(b"x" * 100)) as client:
            with pytest.raises(ImageSizeError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", cfg)
        assert exc_info.value.context["max_bytes"] == 10

    async def test_streamed_body_over_cap(self, config):
        cfg = dataclasses.replace(config, fetch_max_bytes=20)

        async def chunks():
            for _ in range(4):
                yield b"\x89PNG0123"

        def handler(request):
            return httpx.Response(200, content=chunks(), headers={"content-type": "image/png"})

        async with client_for(handler) as client:
            with pytest.raises(ImageSizeError):
                await fetch_image(client, "https://cdn.example.com/a.png", cfg)

    async def test_exactly_at_cap(self, config):
        cfg = dataclasses.replace(config, fetch_max_bytes=len(PNG_BODY))
        async with client_for(lambda r: image_response()) as client:
            data, _ = await fetch_image(client, "https://cdn.example.com/a.png", cfg)
        assert len(data) == len(PNG_BODY)


class TestRedirects:

    async def test_followed(self, config):
        def handler(request):
            if request.url.path == "/start":
                return httpx.Response(302, headers={"location": "https://img.example.net/final.png"})
            return image_response()

        async with client_for(handler) as client:
            data, _ = await fetch_image(client, "https://cdn.example.com/start", config)
        assert data == PNG_BODY

    async def test_relative_location(self, config):
        seen: list[str] = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.path == "/start":
                return httpx.Response(301, headers={"location": "/moved/a.png"})
            return image_response()

        async with client_for(handler) as client:
            await fetch_image(client, "https://cdn.example.com/start", config)
        assert seen[-1] == "https://cdn.example.com/moved/a.png"

    async def test_redirect_into_private_space_rejected(self, config):
        seen: list[str] = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(302, headers={"location": "http://169.254.169.254/latest/meta-data/"})

        async with client_for(handler) as client:
            with pytest.raises(UnsafeUrlError):
                await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert seen == ["https://cdn.example.com/a.png"]

    async def test_redirect_loop_bounded(self, config):
        seen: list[str] = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(307, headers={"location": "https://cdn.example.com/loop"})

        async with client_for(handler) as client:
            with pytest.raises(FetchError):
                await fetch_image(client, "https://cdn.example.com/loop", config)
        assert len(seen) == MAX_REDIRECTS + 1

    async def test_redirect_without_location(self, config):
        async with client_for(lambda r: httpx.Response(302)) as client:
            with pytest.raises(FetchError):
                await fetch_image(client, "https://cdn.example.com/a.png", config)


class TestStatus:

    @pytest.mark.parametrize("status", [400, 403, 404, 410])
    async def test_fatal(self, config, status):
        async with client_for(lambda r: httpx.Response(status)) as client:
            with pytest.raises(FetchError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert exc_info.value.context["status_code"] == status
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    async def test_transient(self, config, status):
        async with client_for(lambda r: httpx.Response(status)) as client:
            with pytest.raises(TransientIOError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert exc_info.value.retryable is True


class TestTimeouts:

    async def test_slow_response_times_out(self, config):
        cfg = dataclasses.replace(config, fetch_timeout_seconds=0.05)

        async def handler(request):
            await asyncio.sleep(1)
            return image_response()

        async with client_for(handler) as client:
            with pytest.raises(FetchTimeoutError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", cfg)
        assert exc_info.value.code == ErrorCode.FETCH_TIMEOUT
        assert exc_info.value.retryable is True

    async def test_transport_timeout(self, config):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        async with client_for(handler) as client:
            with pytest.raises(FetchTimeoutError):
                await fetch_image(client, "https://cdn.example.com/a.png", config)

    async def test_connect_error_is_transient(self, config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(TransientIOError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/a.png", config)
        assert exc_info.value.code == ErrorCode.TRANSIENT_IO


class TestUnparseableUrl:

    async def test_control_character_is_invalid_input(self, config):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return image_response()

        async with client_for(handler) as client:
            with pytest.raises(InvalidInputError) as exc_info:
                await fetch_image(client, "https://cdn.example.com/\x00a.png", config)

        assert seen == []
        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert isinstance(exc_info.value.cause, httpx.InvalidURL)
