from __future__ import annotations

import logging
import re
import tempfile
from collections.abc import Callable, Sequence
from datetime import datetime
from html import escape
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

from ebooklib import epub

from bindery.models.article import EbookChapter, EbookSpec, SanitizedArticle
from bindery.services.errors import AssemblyTooLargeError

LOGGER = logging.getLogger("bindery.assembler")

DEFAULT_EPUB_MAX_BYTES = 10 * 1024 * 1024
COLLECTION_TITLE = "Combined Articles"
FALLBACK_TITLE = "Untitled Article"
FALLBACK_AUTHOR = "Unknown"
PUBLISHER = "Send to Kindle"
SINGLE_TOC_TITLE = "Contents"
MULTI_TOC_TITLE = "What's Inside"

DEFAULT_STYLE_SHEET = """
body { font-family: Georgia, "Times New Roman", serif; font-size: 1em; line-height: 1.7; color: #1a1a1a; margin: 0; padding: 0; }
p { margin: 0 0 1em 0; orphans: 2; widows: 2; }
h1, h2, h3, h4, h5, h6 { font-family: Georgia, serif; line-height: 1.3; margin: 1.5em 0 0.6em 0; font-weight: bold; }
h1 { font-size: 1.6em; } h2 { font-size: 1.3em; } h3 { font-size: 1.1em; } h4, h5, h6 { font-size: 1em; }
a { color: #1a1a1a; text-decoration: underline; }
blockquote { border-left: 3px solid #999; margin: 1.2em 0; padding: 0.4em 1em; color: #444; font-style: italic; }
img { max-width: 100%; height: auto; display: block; margin: 1em auto; }
figure { margin: 1.5em 0; text-align: center; }
figcaption { font-size: 0.85em; color: #666; font-style: italic; margin-top: 0.4em; }
pre, code { font-family: "Courier New", Courier, monospace; font-size: 0.85em; }
pre { background: #f5f5f5; padding: 0.8em 1em; white-space: pre-wrap; word-wrap: break-word; border-left: 3px solid #ccc; margin: 1em 0; }
code { background: #f0f0f0; padding: 0.1em 0.3em; }
pre code { background: none; padding: 0; }
table { border-collapse: collapse; width: 100%; font-size: 0.9em; margin: 1.2em 0; }
th, td { border: 1px solid #ccc; padding: 0.4em 0.6em; text-align: left; }
th { background: #f5f5f5; font-weight: bold; }
ul, ol { margin: 0.8em 0; padding-left: 1.8em; }
li { margin-bottom: 0.3em; }
.article-meta { font-family: Arial, Helvetica, sans-serif; font-size: 0.85em; color: #666; border-bottom: 1px solid #ddd; padding-bottom: 12px; margin-bottom: 20px; }
.article-source { font-weight: bold; color: #444; }
.article-byline { font-style: italic; margin-top: 3px; }
.article-excerpt { font-size: 1.05em; color: #333; font-style: italic; line-height: 1.6; margin: 0 0 1.5em 0; padding-bottom: 1em; border-bottom: 1px solid #eee; }
h1.h1 { text-align: center; text-transform: uppercase; font-size: 1.2em; letter-spacing: 2px; margin-top: 50px; border-bottom: 1px solid #333; padding-bottom: 10px; width: 90%; margin-left: auto; margin-right: auto; }
nav#toc ol { list-style: none; padding: 0; width: 90%; margin: 20px auto; }
li.table-of-content { margin-bottom: 12px; display: block; font-family: Arial, sans-serif; font-size: 0.9em; }
li.table-of-content a { text-decoration: none; color: #1a1a1a; display: block; }
.toc-author { color: #666; font-size: 0.8em; display: block; margin-top: 2px; }
""".strip()


def resolve_title(articles: Sequence[SanitizedArticle], explicit_title: str | None) -> str:
    explicit = _normalize_optional_text(explicit_title)
    if explicit is not None:
        return explicit
    if len(articles) > 1:
        return COLLECTION_TITLE
    if articles:
        first_title = _normalize_optional_text(articles[0].title)
        if first_title is not None:
            return first_title
    return FALLBACK_TITLE


def resolve_author(articles: Sequence[SanitizedArticle], explicit_author: str | None) -> str:
    explicit = _normalize_optional_text(explicit_author)
    if explicit is not None:
        return explicit
    if not articles:
        return FALLBACK_AUTHOR
    first = articles[0]
    return (
        _normalize_optional_text(first.byline)
        or _normalize_optional_text(first.site_name)
        or _hostname(first.source_url)
        or FALLBACK_AUTHOR
    )


def attachment_filename(title: str) -> str:
    return f"{re.sub(r'[^a-z0-9]', '_', title, flags=re.IGNORECASE).lower()}.epub"


def format_long_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


class EbookAssembler:
    def __init__(
        self,
        *,
        max_bytes: int = DEFAULT_EPUB_MAX_BYTES,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._max_bytes = max(1, max_bytes)
        self._clock = clock

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def assemble(
        self,
        articles: Sequence[SanitizedArticle],
        *,
        title: str | None,
        author: str | None,
        cover_bytes: bytes,
        style_sheet: str = DEFAULT_STYLE_SHEET,
    ) -> bytes:
        spec = self.build_spec(
            articles,
            title=title,
            author=author,
            cover_bytes=cover_bytes,
            style_sheet=style_sheet,
        )
        document = package_epub(spec)
        if len(document) > self._max_bytes:
            LOGGER.info(
                "epub rejected over size limit size_bytes=%s limit_bytes=%s chapters=%s",
                len(document),
                self._max_bytes,
                len(spec.chapters),
            )
            raise AssemblyTooLargeError(size_bytes=len(document), limit_bytes=self._max_bytes)
        return document

    def build_spec(
        self,
        articles: Sequence[SanitizedArticle],
        *,
        title: str | None,
        author: str | None,
        cover_bytes: bytes,
        style_sheet: str = DEFAULT_STYLE_SHEET,
    ) -> EbookSpec:
        is_multi = len(articles) > 1
        date_text = format_long_date(self._clock())
        chapters = tuple(
            EbookChapter(
                title=_chapter_title(article, index, is_multi=is_multi),
                content_html=_chapter_body(article, date_text),
                author=_normalize_optional_text(article.byline)
                or _normalize_optional_text(article.site_name),
            )
            for index, article in enumerate(articles)
        )
        return EbookSpec(
            title=resolve_title(articles, title),
            author=resolve_author(articles, author),
            cover_bytes=cover_bytes,
            style_sheet=style_sheet,
            chapters=chapters,
            description=(articles[0].excerpt or "") if articles else "",
            toc_title=MULTI_TOC_TITLE if is_multi else SINGLE_TOC_TITLE,
            prepend_chapter_titles=is_multi,
        )


def package_epub(spec: EbookSpec) -> bytes:
    """Write ``spec`` as an EPUB and return its bytes.

    The book is written into a private temporary directory that is removed
    whether or not packaging succeeds.
    """
    book = epub.EpubBook()
    book.set_identifier(f"urn:uuid:{uuid4()}")
    book.set_title(spec.title)
    book.set_language("en")
    book.add_author(spec.author)
    book.add_metadata("DC", "publisher", PUBLISHER)
    if spec.description:
        book.add_metadata("DC", "description", spec.description)
    book.set_cover("cover.jpg", spec.cover_bytes)

    css_item = epub.EpubItem(
        uid="style_main",
        file_name="style/main.css",
        media_type="text/css",
        content=spec.style_sheet,
    )
    book.add_item(css_item)

    chapter_items: list[epub.EpubHtml] = []
    for index, chapter in enumerate(spec.chapters, start=1):
        item = epub.EpubHtml(
            title=chapter.title,
            file_name=f"chapter_{index:02d}.xhtml",
            lang="en",
        )
        heading = f"<h1>{escape(chapter.title)}</h1>" if spec.prepend_chapter_titles else ""
        item.content = f"<html><body>{heading}{chapter.content_html}</body></html>"
        item.add_item(css_item)
        book.add_item(item)
        chapter_items.append(item)

    toc_page = epub.EpubHtml(title=spec.toc_title, file_name="toc.xhtml", lang="en")
    toc_page.content = _toc_page_body(spec)
    toc_page.add_item(css_item)
    book.add_item(toc_page)

    book.toc = [
        epub.Link("toc.xhtml", spec.toc_title, "toc"),
        *(
            epub.Link(item.file_name, chapter.title, f"chapter_{index:02d}")
            for index, (item, chapter) in enumerate(
                zip(chapter_items, spec.chapters, strict=True), start=1
            )
        ),
    ]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["cover", toc_page, *chapter_items]

    with tempfile.TemporaryDirectory(prefix="bindery-epub-") as work_dir:
        output_path = Path(work_dir) / "book.epub"
        epub.write_epub(str(output_path), book, {})
        return output_path.read_bytes()


def _chapter_title(article: SanitizedArticle, index: int, *, is_multi: bool) -> str:
    title = _normalize_optional_text(article.title) or FALLBACK_TITLE
    if is_multi:
        return f"{index + 1:02d}. {title}"
    return title


def _chapter_body(article: SanitizedArticle, date_text: str) -> str:
    source = _normalize_optional_text(article.site_name) or _hostname(article.source_url) or ""
    meta_line = " · ".join(part for part in (source, date_text) if part)
    byline = _normalize_optional_text(article.byline)
    byline_part = f'<div class="article-byline">By {escape(byline)}</div>' if byline else ""
    excerpt = _normalize_optional_text(article.excerpt)
    excerpt_part = f'<p class="article-excerpt">{escape(excerpt)}</p>' if excerpt else ""
    return (
        '<div class="article-meta">'
        f'<span class="article-source">{escape(meta_line)}</span>'
        f"{byline_part}"
        "</div>"
        f"{excerpt_part}"
        f"{article.content_html}"
    )


def _toc_page_body(spec: EbookSpec) -> str:
    entries: list[str] = []
    for index, chapter in enumerate(spec.chapters, start=1):
        author_part = (
            f'<span class="toc-author">{escape(chapter.author)}</span>' if chapter.author else ""
        )
        entries.append(
            '<li class="table-of-content">'
            f'<a href="chapter_{index:02d}.xhtml">{escape(chapter.title)}{author_part}</a>'
            "</li>"
        )
    return (
        "<html><body>"
        f'<h1 class="h1">{escape(spec.toc_title)}</h1>'
        f'<nav id="toc"><ol>{"".join(entries)}</ol></nav>'
        "</body></html>"
    )


def _hostname(url: str | None) -> str | None:
    if not url:
        return None
    try:
        return urlparse(url).hostname or None
    except ValueError:
        return None


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized
