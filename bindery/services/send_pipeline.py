from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import perf_counter
from typing import Protocol

from bindery.models.article import Article, SanitizedArticle
from bindery.services.article_fetcher import FetchedPage
from bindery.services.content_sanitizer import sanitize
from bindery.services.cover_renderer import render_cover
from bindery.services.delivery import Attachment, Delivery
from bindery.services.ebook_assembler import (
    EbookAssembler,
    attachment_filename,
    resolve_author,
    resolve_title,
)
from bindery.services.errors import (
    AllUrlsFailedError,
    BinderyError,
    ExtractionFailure,
)
from bindery.services.readable_extractor import extract_article
from bindery.services.url_guard import validate_url
from bindery.telemetry import TelemetryClient

LOGGER = logging.getLogger("bindery.send_pipeline")

EMAIL_BODY_TEXT = "Here is your article."


class PageFetcher(Protocol):
    def fetch(self, url: str) -> FetchedPage:
        ...


@dataclass(frozen=True)
class SendResult:
    title: str
    author: str
    subject: str
    attachment_filename: str
    size_bytes: int
    chapter_count: int
    failed_urls: tuple[str, ...]


@dataclass(frozen=True)
class _PreparedUrl:
    url: str
    article: SanitizedArticle | None


class SendPipeline:
    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        assembler: EbookAssembler,
        delivery: Delivery,
        telemetry: TelemetryClient | None = None,
        extractor: Callable[[str, str], Article | None] = extract_article,
        sanitizer: Callable[[str, str], str] = sanitize,
        cover_renderer: Callable[[str, str], bytes] = render_cover,
        max_workers: int = 4,
    ) -> None:
        self._fetcher = fetcher
        self._assembler = assembler
        self._delivery = delivery
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._extractor = extractor
        self._sanitizer = sanitizer
        self._cover_renderer = cover_renderer
        self._max_workers = max(1, max_workers)

    def prepare_article(self, url: str) -> SanitizedArticle:
        """Run one URL through guard, fetch, extract and sanitize."""
        validate_url(url)
        page = self._fetcher.fetch(url)
        article = self._extractor(page.html, page.final_url)
        if article is None:
            raise ExtractionFailure(f"no readable content at {url}")
        return article.sanitized(self._sanitizer(article.content_html, page.final_url))

    def collect_articles(
        self, urls: Sequence[str]
    ) -> tuple[list[SanitizedArticle], list[str]]:
        """Prepare every URL, returning articles in input order plus the URLs that failed."""
        if len(urls) <= 1 or self._max_workers == 1:
            prepared = [self._prepare_safely(url) for url in urls]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(urls)),
                thread_name_prefix="bindery-fetch",
            ) as executor:
                prepared = list(executor.map(self._prepare_safely, urls))

        articles = [item.article for item in prepared if item.article is not None]
        failed_urls = [item.url for item in prepared if item.article is None]
        return articles, failed_urls

    def send(
        self,
        urls: Sequence[str],
        *,
        to_address: str,
        title: str | None = None,
        author: str | None = None,
    ) -> SendResult:
        started_at = perf_counter()
        self._telemetry.emit("send.start", url_count=len(urls))
        try:
            articles, failed_urls = self.collect_articles(urls)
            if not articles:
                raise AllUrlsFailedError(failed_urls)

            final_title = resolve_title(articles, title)
            final_author = resolve_author(articles, author)
            cover_bytes = self._cover_renderer(final_title, final_author)
            document = self._assembler.assemble(
                articles,
                title=final_title,
                author=final_author,
                cover_bytes=cover_bytes,
            )

            subject = (
                f"Article: {articles[0].title}" if len(articles) == 1 else f"Bundle: {final_title}"
            )
            filename = attachment_filename(final_title)
            self._delivery.send(
                to_address=to_address,
                subject=subject,
                body_text=EMAIL_BODY_TEXT,
                attachment=Attachment(filename=filename, content=document),
            )
        except BinderyError as exc:
            self._telemetry.emit(
                "send.error",
                url_count=len(urls),
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise

        result = SendResult(
            title=final_title,
            author=final_author,
            subject=subject,
            attachment_filename=filename,
            size_bytes=len(document),
            chapter_count=len(articles),
            failed_urls=tuple(failed_urls),
        )
        self._telemetry.emit(
            "send.finish",
            url_count=len(urls),
            chapter_count=result.chapter_count,
            failed_count=len(result.failed_urls),
            size_bytes=result.size_bytes,
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        LOGGER.info(
            "send finished chapters=%s failed=%s size_bytes=%s",
            result.chapter_count,
            len(result.failed_urls),
            result.size_bytes,
        )
        return result

    def _prepare_safely(self, url: str) -> _PreparedUrl:
        try:
            article = self.prepare_article(url)
        except BinderyError as exc:
            LOGGER.warning(
                "article skipped url=%s error_type=%s error=%s", url, type(exc).__name__, exc
            )
            self._telemetry.emit("article.fetch.error", error_type=type(exc).__name__)
            return _PreparedUrl(url=url, article=None)
        return _PreparedUrl(url=url, article=article)
