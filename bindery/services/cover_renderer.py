from __future__ import annotations

import logging
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

LOGGER = logging.getLogger("bindery.cover")

COVER_WIDTH = 1200
COVER_HEIGHT = 1600
TITLE_MAX_WIDTH = 950
TITLE_MAX_LINES = 6
AUTHOR_MAX_WIDTH = 900
AUTHOR_MAX_CHARS = 70
AUTHOR_MAX_LINES = 3
ELLIPSIS = "…"

_BACKGROUND = (250, 249, 246)
_INK = (26, 26, 26)
_BORDER = (44, 44, 44)
_MUTED = (85, 85, 85)
_AUTHOR_INK = (51, 51, 51)

_SERIF_BOLD_FONTS = ("DejaVuSerif-Bold.ttf", "LiberationSerif-Bold.ttf", "Georgia Bold.ttf")
_SERIF_ITALIC_FONTS = ("DejaVuSerif-Italic.ttf", "LiberationSerif-Italic.ttf", "Georgia Italic.ttf")
_SANS_BOLD_FONTS = ("DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "Arial Bold.ttf")

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont


def render_cover(title: str, author: str, *, header: str = "KINDLE BINDERY") -> bytes:
    """Draw a portrait JPEG cover for ``title`` / ``author``.

    Overlong text never fails the render: the author is cut to a fixed
    character limit and both blocks are cut to a bounded number of lines,
    with an ellipsis marking the cut.
    """
    title = " ".join(title.split()) or "Untitled Article"
    author = " ".join(author.split()) or "Unknown"

    image = Image.new("RGB", (COVER_WIDTH, COVER_HEIGHT), color=_BACKGROUND)
    draw = ImageDraw.Draw(image)

    draw.rectangle(
        [(40, 40), (COVER_WIDTH - 40, COVER_HEIGHT - 40)], outline=_BORDER, width=2
    )
    draw.rectangle(
        [(60, 60), (COVER_WIDTH - 60, COVER_HEIGHT - 60)], outline=_BORDER, width=8
    )

    center_x = COVER_WIDTH / 2
    draw.text(
        (center_x, 150), header, fill=_MUTED, font=_load_font(_SANS_BOLD_FONTS, 24), anchor="ms"
    )

    title_font_size = _title_font_size(title)
    title_font = _load_font(_SERIF_BOLD_FONTS, title_font_size)
    title_lines = _limit_lines(
        draw, wrap_text(draw, title, title_font, TITLE_MAX_WIDTH), title_font,
        TITLE_MAX_WIDTH, TITLE_MAX_LINES,
    )
    line_height = title_font_size * 1.28
    title_y = 500 - ((len(title_lines) - 1) * line_height) / 2
    for line in title_lines:
        draw.text((center_x, title_y), line, fill=_INK, font=title_font, anchor="ms")
        title_y += line_height
    after_title = title_y - line_height + title_font_size * 0.25

    draw.line(
        [(center_x - 160, after_title + 60), (center_x + 160, after_title + 60)],
        fill=_INK,
        width=2,
    )

    author_font = _load_font(_SERIF_ITALIC_FONTS, 52)
    author_lines = _limit_lines(
        draw,
        wrap_text(draw, truncate_author(author), author_font, AUTHOR_MAX_WIDTH),
        author_font,
        AUTHOR_MAX_WIDTH,
        AUTHOR_MAX_LINES,
    )
    author_y = after_title + 140
    for line in author_lines:
        draw.text((center_x, author_y), line, fill=_AUTHOR_INK, font=author_font, anchor="ms")
        author_y += 65

    draw.text(
        (center_x, COVER_HEIGHT - 110),
        "SEND TO KINDLE",
        fill=_MUTED,
        font=_load_font(_SANS_BOLD_FONTS, 22),
        anchor="ms",
    )

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=92)
    return buffer.getvalue()


def truncate_author(author: str) -> str:
    if len(author) > AUTHOR_MAX_CHARS:
        return f"{author[:67]}{ELLIPSIS}"
    return author


def wrap_text(
    draw: ImageDraw.ImageDraw, text: str, font: FontType, max_width: int
) -> list[str]:
    lines: list[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def _limit_lines(
    draw: ImageDraw.ImageDraw,
    lines: list[str],
    font: FontType,
    max_width: int,
    max_lines: int,
) -> list[str]:
    if len(lines) <= max_lines:
        return lines
    kept = lines[:max_lines]
    last = kept[-1]
    while last and draw.textlength(f"{last}{ELLIPSIS}", font=font) > max_width:
        last = last[:-1]
    kept[-1] = f"{last.rstrip()}{ELLIPSIS}"
    return kept


def _title_font_size(title: str) -> int:
    if len(title) > 60:
        return 60
    if len(title) > 40:
        return 72
    return 90


def _load_font(candidates: tuple[str, ...], size: int) -> FontType:
    for name in candidates:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    LOGGER.debug("no truetype font found, using default font size=%s", size)
    return ImageFont.load_default(size=size)
