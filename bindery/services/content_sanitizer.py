"""Rewrite extracted article HTML so it renders without network tricks.

Each ``<img>`` goes through a fixed sequence:

1. lazy-load attributes (see ``LAZY_SRC_ATTRIBUTES``), first usable one wins;
2. ``srcset`` / ``data-srcset`` first candidate when ``src`` is still empty
   or a data URI;
3. whatever sits in ``src`` is made absolute against the article URL;
4. ``/_next/image?url=...`` proxy URLs are unwrapped to their target;
5. placeholders (empty, ``#``, SVG data URIs, base64 GIF spinners) are
   dropped, along with a wrapping figure/p/div the removal leaves empty;
6. survivors lose ``width``/``height``/``srcset``/``sizes`` and the lazy
   attributes, and get an empty ``alt`` when none is set.

``script``, ``style`` and ``noscript`` elements are always removed.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, unquote, urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

LOGGER = logging.getLogger("bindery.sanitizer")

LAZY_SRC_ATTRIBUTES: tuple[str, ...] = (
    "data-src",
    "data-lazy-src",
    "data-original",
    "data-lazy",
    "data-url",
    "data-hi-res-src",
    "data-original-src",
    "data-image-src",
)
SRCSET_ATTRIBUTES: tuple[str, ...] = ("srcset", "data-srcset")
STALE_IMAGE_ATTRIBUTES: tuple[str, ...] = ("width", "height", "srcset", "sizes")
REMOVED_TAGS: tuple[str, ...] = ("script", "style", "noscript")
EMPTY_CONTAINER_TAGS: frozenset[str] = frozenset({"figure", "p", "div"})
NEXT_IMAGE_PROXY_MARKER = "/_next/image"
GIF_SPINNER_SIGNATURE = "data:image/gif;base64,R0lGOD"


def sanitize(content_html: str, base_url: str) -> str:
    if not content_html:
        return ""
    try:
        soup = BeautifulSoup(content_html, "html.parser")
    except ParserRejectedMarkup:
        LOGGER.warning("sanitizer left unparseable content untouched url=%s", base_url)
        return content_html

    for element in soup.find_all(list(REMOVED_TAGS)):
        # nested matches go away with their removed ancestor
        if not element.decomposed:
            element.decompose()

    for image in soup.find_all("img"):
        _rewrite_image(image, base_url)

    return soup.decode(formatter="minimal")


def resolve_url(value: str | None, base_url: str) -> str | None:
    """Make ``value`` absolute, or return ``None`` when it cannot be used as an image source."""
    if value is None:
        return None
    candidate = value.strip()
    if not candidate or candidate.startswith("data:"):
        return None
    if candidate.startswith("//"):
        candidate = f"https:{candidate}"
    if candidate.startswith("http"):
        return candidate
    try:
        return urljoin(base_url, candidate)
    except ValueError:
        return None


def unwrap_image_proxy(url: str) -> str:
    """Return the target of a ``/_next/image?url=...`` proxy URL, or ``url`` unchanged."""
    if NEXT_IMAGE_PROXY_MARKER not in url:
        return url
    try:
        parsed = urlparse(url)
        inner_values = parse_qs(parsed.query).get("url")
    except ValueError:
        return url
    if not inner_values or not inner_values[0]:
        return url
    inner = unquote(inner_values[0])
    return resolve_url(inner, url) or url


def is_broken_image_src(src: str) -> bool:
    return (
        not src
        or src == "#"
        or src.startswith("data:image/svg")
        or GIF_SPINNER_SIGNATURE in src
    )


def _rewrite_image(image: Tag, base_url: str) -> None:
    for attribute in LAZY_SRC_ATTRIBUTES:
        resolved = resolve_url(_attribute_text(image, attribute), base_url)
        if resolved:
            image["src"] = resolved
            break

    current_src = _attribute_text(image, "src") or ""
    if not current_src or current_src.startswith("data:"):
        srcset = _attribute_text(image, "srcset") or _attribute_text(image, "data-srcset") or ""
        first_candidate = _first_srcset_candidate(srcset)
        resolved = resolve_url(first_candidate, base_url)
        if resolved:
            image["src"] = resolved

    src = _attribute_text(image, "src") or ""
    if not is_broken_image_src(src) and not src.startswith("data:"):
        resolved = resolve_url(src, base_url)
        if resolved:
            image["src"] = resolved

    proxied = _attribute_text(image, "src") or ""
    if NEXT_IMAGE_PROXY_MARKER in proxied:
        image["src"] = unwrap_image_proxy(proxied)

    final_src = (_attribute_text(image, "src") or "").strip()
    if is_broken_image_src(final_src):
        _remove_with_empty_container(image)
        return

    for attribute in (*STALE_IMAGE_ATTRIBUTES, *LAZY_SRC_ATTRIBUTES, *SRCSET_ATTRIBUTES):
        if attribute in image.attrs:
            del image[attribute]
    if not _attribute_text(image, "alt"):
        image["alt"] = ""


def _remove_with_empty_container(image: Tag) -> None:
    parent = image.parent
    image.decompose()
    if not isinstance(parent, Tag) or parent.name not in EMPTY_CONTAINER_TAGS:
        return
    if not parent.decode_contents().strip():
        parent.decompose()


def _first_srcset_candidate(srcset: str) -> str | None:
    first_entry = srcset.split(",")[0].strip()
    if not first_entry:
        return None
    return first_entry.split()[0]


def _attribute_text(image: Tag, name: str) -> str | None:
    value = image.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)
