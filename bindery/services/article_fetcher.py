from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from email.message import Message
from typing import IO, Any
from urllib.error import HTTPError, URLError
from urllib.request import HTTPRedirectHandler, Request, build_opener

from bindery.services.errors import (
    FetchHttpError,
    FetchNetworkError,
    FetchTimeoutError,
    FetchTooLargeError,
)
from bindery.services.url_guard import validate_url

LOGGER = logging.getLogger("bindery.fetcher")

DEFAULT_FETCH_TIMEOUT_SECONDS = 15.0
DEFAULT_FETCH_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124 Safari/537.36"
)
_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class FetchedPage:
    html: str
    final_url: str
    http_status: int | None


class _GuardedRedirectHandler(HTTPRedirectHandler):
    def redirect_request(
        self,
        req: Request,
        fp: IO[bytes],
        code: int,
        msg: str,
        headers: Message,
        newurl: str,
    ) -> Request | None:
        validate_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


class ArticleFetcher:
    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        max_bytes: int = DEFAULT_FETCH_MAX_BYTES,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._max_bytes = max(1, max_bytes)
        self._user_agent = user_agent.strip() or DEFAULT_USER_AGENT
        self._opener = build_opener(_GuardedRedirectHandler())

    def fetch(self, url: str) -> FetchedPage:
        """Download ``url`` and return its decoded HTML.

        Every redirect hop is validated before it is followed, and the final
        URL is validated once more before the body is accepted.
        """
        validate_url(url)
        request = Request(
            url,
            headers={
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "User-Agent": self._user_agent,
            },
            method="GET",
        )
        try:
            with self._opener.open(request, timeout=self._timeout_seconds) as response:
                final_url = response.geturl() or url
                if final_url != url:
                    validate_url(final_url)
                self._check_declared_length(response.headers.get("Content-Length"), url)
                body = self._read_bounded(response, url)
                charset = response.headers.get_content_charset() or "utf-8"
                return FetchedPage(
                    html=body.decode(charset, errors="replace"),
                    final_url=final_url,
                    http_status=getattr(response, "status", None),
                )
        except HTTPError as exc:
            status_code = int(exc.code)
            raise FetchHttpError(f"http_{status_code}", status_code=status_code) from exc
        except URLError as exc:
            if isinstance(exc.reason, (TimeoutError, socket.timeout)):
                raise FetchTimeoutError(f"timeout after {self._timeout_seconds}s") from exc
            raise FetchNetworkError(f"network_error:{type(exc.reason).__name__}") from exc
        except TimeoutError as exc:
            raise FetchTimeoutError(f"timeout after {self._timeout_seconds}s") from exc
        except OSError as exc:
            raise FetchNetworkError(f"network_error:{type(exc).__name__}") from exc
        except LookupError as exc:
            # unknown charset advertised by the server
            raise FetchNetworkError(f"decode_error:{exc}") from exc

    def _check_declared_length(self, raw_length: str | None, url: str) -> None:
        if raw_length is None:
            return
        try:
            declared = int(raw_length.strip())
        except ValueError:
            return
        if declared > self._max_bytes:
            LOGGER.info(
                "article fetch rejected by content-length url=%s declared=%s limit=%s",
                url,
                declared,
                self._max_bytes,
            )
            raise FetchTooLargeError(f"response exceeds {self._max_bytes} bytes")

    def _read_bounded(self, response: Any, url: str) -> bytes:
        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = response.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            total += len(chunk)
            if total > self._max_bytes:
                LOGGER.info(
                    "article fetch aborted over size limit url=%s limit=%s",
                    url,
                    self._max_bytes,
                )
                raise FetchTooLargeError(f"response exceeds {self._max_bytes} bytes")
            chunks.append(chunk)
        return b"".join(chunks)
