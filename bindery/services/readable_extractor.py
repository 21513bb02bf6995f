from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import unescape
from html.parser import HTMLParser
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from bindery.models.article import Article

LOGGER = logging.getLogger("bindery.extractor")

_EXCERPT_MAX_CHARS = 300


@dataclass(frozen=True)
class _PageMetadata:
    title: str | None
    byline: str | None
    site_name: str | None
    excerpt: str | None


class _PageMetadataParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._meta: dict[str, str] = {}
        self._title_parts: list[str] = []
        self._capture_title = False

    @property
    def title_text(self) -> str | None:
        if not self._title_parts:
            return None
        return _normalize_optional_text("".join(self._title_parts))

    def meta_value(self, key: str) -> str | None:
        return _normalize_optional_text(self._meta.get(key.lower()))

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        if tag_name == "title":
            self._capture_title = True
            return
        if tag_name != "meta":
            return
        attrs_map = {name.lower(): (value or "").strip() for name, value in attrs}
        key = attrs_map.get("property") or attrs_map.get("name") or attrs_map.get("itemprop")
        normalized_key = _normalize_optional_text(key)
        normalized_value = _normalize_optional_text(unescape(attrs_map.get("content") or ""))
        if normalized_key is None or normalized_value is None:
            return
        self._meta.setdefault(normalized_key.lower(), normalized_value)

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() == "title":
            self._capture_title = False

    def handle_data(self, data: str) -> None:
        if self._capture_title:
            self._title_parts.append(data)


def extract_article(raw_html: str, base_url: str) -> Article | None:
    """Turn a raw page into an :class:`Article`, or ``None`` when nothing readable is found."""
    if _normalize_optional_text(raw_html) is None:
        return None

    try:
        document = Document(raw_html, url=base_url)
        content_html = document.summary(html_partial=True)
        readability_title = _normalize_optional_text(document.short_title())
    except (Unparseable, ParserError, ValueError) as exc:
        LOGGER.info("readability could not parse page url=%s error=%s", base_url, exc)
        return None

    content_text = _visible_text(content_html)
    if content_text is None:
        LOGGER.info("readability found no main content url=%s", base_url)
        return None

    metadata = _extract_page_metadata(raw_html)
    title = metadata.title or readability_title or _title_from_url(base_url)
    excerpt = metadata.excerpt or _first_paragraph(content_html)
    return Article(
        title=title,
        content_html=content_html,
        source_url=base_url,
        byline=metadata.byline,
        site_name=metadata.site_name,
        excerpt=excerpt,
    )


def _extract_page_metadata(raw_html: str) -> _PageMetadata:
    parser = _PageMetadataParser()
    try:
        parser.feed(raw_html)
        parser.close()
    except AssertionError:
        # html.parser gives up on some broken declarations; keep what was collected
        LOGGER.debug("metadata parser stopped early", exc_info=True)
    return _PageMetadata(
        title=(
            parser.meta_value("og:title")
            or parser.meta_value("twitter:title")
            or parser.title_text
        ),
        byline=(
            parser.meta_value("author")
            or parser.meta_value("article:author")
            or parser.meta_value("parsely-author")
            or parser.meta_value("dc.creator")
        ),
        site_name=(
            parser.meta_value("og:site_name")
            or parser.meta_value("application-name")
            or parser.meta_value("publisher")
        ),
        excerpt=(
            parser.meta_value("og:description")
            or parser.meta_value("description")
            or parser.meta_value("twitter:description")
        ),
    )


def _visible_text(content_html: str) -> str | None:
    soup = BeautifulSoup(content_html, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    if _normalize_optional_text(text) is None and soup.find("img") is None:
        return None
    return text


def _first_paragraph(content_html: str) -> str | None:
    soup = BeautifulSoup(content_html, "html.parser")
    for paragraph in soup.find_all("p"):
        text = re.sub(r"\s+", " ", paragraph.get_text(" ", strip=True)).strip()
        if not text:
            continue
        if len(text) <= _EXCERPT_MAX_CHARS:
            return text
        return f"{text[: _EXCERPT_MAX_CHARS - 1].rstrip()}…"
    return None


def _title_from_url(value: str) -> str:
    parsed = urlparse(value)
    slug = parsed.path.rstrip("/").rsplit("/", 1)[-1].strip()
    slug = re.sub(r"\.[a-z0-9]{2,4}$", "", slug, flags=re.IGNORECASE)
    cleaned = " ".join(word for word in re.split(r"[-_]+", slug) if word)
    if not cleaned:
        return f"Article from {parsed.hostname or 'the web'}"
    return cleaned.title()


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized
