from __future__ import annotations

import io
from email.message import Message
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request

import pytest

from bindery.services.article_fetcher import ArticleFetcher, _GuardedRedirectHandler
from bindery.services.errors import (
    DisallowedSchemeError,
    FetchHttpError,
    FetchNetworkError,
    FetchTimeoutError,
    FetchTooLargeError,
    InvalidUrlError,
    PrivateAddressError,
)
from bindery.services.url_guard import is_private_hostname, validate_url


class _FakeResponse:
    def __init__(
        self,
        body: bytes,
        *,
        url: str,
        headers: dict[str, str] | None = None,
        status: int = 200,
    ) -> None:
        self._buffer = io.BytesIO(body)
        self._url = url
        self.headers = Message()
        for key, value in (headers or {}).items():
            self.headers[key] = value
        self.status = status

    def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    def geturl(self) -> str:
        return self._url

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


class _FakeOpener:
    def __init__(
        self,
        *,
        response: _FakeResponse | None = None,
        error: BaseException | None = None,
    ) -> None:
        self._response = response
        self._error = error
        self.requests: list[Request] = []

    def open(self, request: Request, timeout: float | None = None) -> Any:
        _ = timeout
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return self._response


def _fetcher_with(
    monkeypatch: pytest.MonkeyPatch, opener: _FakeOpener, **kwargs: Any
) -> ArticleFetcher:
    fetcher = ArticleFetcher(**kwargs)
    monkeypatch.setattr(fetcher, "_opener", opener)
    return fetcher


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost/admin",
        "http://127.0.0.1:8080/",
        "http://10.1.2.3/",
        "http://172.20.0.5/",
        "http://192.168.1.10/router",
        "http://169.254.169.254/latest/meta-data",
        "http://0.0.0.0/",
        "http://[::1]/",
        "http://[fe80::1]/",
        "http://[::ffff:127.0.0.1]/",
        "http://api.localhost/",
    ],
)
def test_validate_url_rejects_private_addresses(url: str) -> None:
    with pytest.raises(PrivateAddressError):
        validate_url(url)


@pytest.mark.parametrize("url", ["ftp://example.com/file", "file:///etc/passwd", "javascript:alert(1)"])
def test_validate_url_rejects_other_schemes(url: str) -> None:
    with pytest.raises((DisallowedSchemeError, InvalidUrlError)):
        validate_url(url)


@pytest.mark.parametrize("url", ["", "   ", "not a url", "/relative/path", "http://", "http://example.com:99999/"])
def test_validate_url_rejects_malformed_input(url: str) -> None:
    with pytest.raises(InvalidUrlError):
        validate_url(url)


def test_validate_url_accepts_public_urls() -> None:
    assert validate_url(" https://example.com/post?id=1 ") == "https://example.com/post?id=1"
    assert validate_url("http://172.32.0.1/") == "http://172.32.0.1/"
    assert is_private_hostname("example.com") is False


def test_redirect_to_private_address_is_rejected() -> None:
    handler = _GuardedRedirectHandler()
    request = Request("https://public.example.com/start")

    with pytest.raises(PrivateAddressError):
        handler.redirect_request(
            request,
            io.BytesIO(b""),
            302,
            "Found",
            Message(),
            "http://192.168.0.1/internal",
        )


def test_fetch_rejects_private_final_url(monkeypatch: pytest.MonkeyPatch) -> None:
    opener = _FakeOpener(
        response=_FakeResponse(
            b"<html></html>",
            url="http://127.0.0.1/admin",
            headers={"Content-Type": "text/html"},
        )
    )
    fetcher = _fetcher_with(monkeypatch, opener)

    with pytest.raises(PrivateAddressError):
        fetcher.fetch("https://public.example.com/start")


def test_fetch_returns_decoded_page(monkeypatch: pytest.MonkeyPatch) -> None:
    body = "<html><body><p>Café</p></body></html>".encode("latin-1")
    opener = _FakeOpener(
        response=_FakeResponse(
            body,
            url="https://example.com/moved",
            headers={"Content-Type": "text/html; charset=iso-8859-1"},
        )
    )
    fetcher = _fetcher_with(monkeypatch, opener, user_agent="bindery-tests/1.0")

    page = fetcher.fetch("https://example.com/post")

    assert "Café" in page.html
    assert page.final_url == "https://example.com/moved"
    assert page.http_status == 200
    assert opener.requests[0].get_header("User-agent") == "bindery-tests/1.0"


def test_fetch_never_opens_private_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    opener = _FakeOpener(response=_FakeResponse(b"", url="http://10.0.0.1/"))
    fetcher = _fetcher_with(monkeypatch, opener)

    with pytest.raises(PrivateAddressError):
        fetcher.fetch("http://10.0.0.1/")
    assert opener.requests == []


def test_fetch_rejects_declared_oversized_body(monkeypatch: pytest.MonkeyPatch) -> None:
    opener = _FakeOpener(
        response=_FakeResponse(
            b"small",
            url="https://example.com/big",
            headers={"Content-Length": str(11 * 1024 * 1024)},
        )
    )
    fetcher = _fetcher_with(monkeypatch, opener)

    with pytest.raises(FetchTooLargeError):
        fetcher.fetch("https://example.com/big")


def test_fetch_stops_reading_past_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    opener = _FakeOpener(response=_FakeResponse(b"x" * 5000, url="https://example.com/stream"))
    fetcher = _fetcher_with(monkeypatch, opener, max_bytes=1024)

    with pytest.raises(FetchTooLargeError):
        fetcher.fetch("https://example.com/stream")


def test_fetch_maps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    http_error = HTTPError("https://example.com/gone", 404, "Not Found", Message(), None)
    fetcher = _fetcher_with(monkeypatch, _FakeOpener(error=http_error))
    with pytest.raises(FetchHttpError) as exc_info:
        fetcher.fetch("https://example.com/gone")
    assert exc_info.value.status_code == 404

    fetcher = _fetcher_with(monkeypatch, _FakeOpener(error=URLError(TimeoutError("timed out"))))
    with pytest.raises(FetchTimeoutError):
        fetcher.fetch("https://example.com/slow")

    fetcher = _fetcher_with(monkeypatch, _FakeOpener(error=URLError(ConnectionRefusedError())))
    with pytest.raises(FetchNetworkError):
        fetcher.fetch("https://example.com/down")
