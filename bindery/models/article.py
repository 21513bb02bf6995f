from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Article:
    title: str
    content_html: str
    source_url: str
    byline: str | None = None
    site_name: str | None = None
    excerpt: str | None = None

    def sanitized(self, content_html: str) -> SanitizedArticle:
        return SanitizedArticle(
            title=self.title,
            content_html=content_html,
            source_url=self.source_url,
            byline=self.byline,
            site_name=self.site_name,
            excerpt=self.excerpt,
        )


@dataclass(frozen=True)
class SanitizedArticle(Article):
    """Article whose content has been rewritten for offline rendering."""


@dataclass(frozen=True)
class EbookChapter:
    title: str
    content_html: str
    author: str | None = None


@dataclass(frozen=True)
class EbookSpec:
    title: str
    author: str
    cover_bytes: bytes
    style_sheet: str
    chapters: tuple[EbookChapter, ...] = field(default_factory=tuple)
    description: str = ""
    toc_title: str = "Contents"
    prepend_chapter_titles: bool = False
