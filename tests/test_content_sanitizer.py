from __future__ import annotations

from bs4 import BeautifulSoup

from bindery.services.content_sanitizer import (
    LAZY_SRC_ATTRIBUTES,
    is_broken_image_src,
    resolve_url,
    sanitize,
    unwrap_image_proxy,
)

BASE_URL = "https://blog.example.com/posts/hello"


def _images(html: str) -> list[dict[str, str]]:
    soup = BeautifulSoup(html, "html.parser")
    return [
        {name: str(value) for name, value in image.attrs.items()}
        for image in soup.find_all("img")
    ]


def test_next_image_proxy_is_unwrapped() -> None:
    html = '<p><img src="/_next/image?url=https%3A%2F%2Fcdn.example.com%2Fx.jpg&amp;w=800"></p>'

    images = _images(sanitize(html, BASE_URL))

    assert images == [{"src": "https://cdn.example.com/x.jpg", "alt": ""}]


def test_unwrap_image_proxy_leaves_other_urls_alone() -> None:
    assert unwrap_image_proxy("https://cdn.example.com/a.png") == "https://cdn.example.com/a.png"
    assert (
        unwrap_image_proxy("https://site.example.com/_next/image?w=800")
        == "https://site.example.com/_next/image?w=800"
    )
    assert (
        unwrap_image_proxy("https://site.example.com/_next/image?url=%2Fstatic%2Fpic.png&w=64")
        == "https://site.example.com/static/pic.png"
    )


def test_lazy_attributes_follow_priority_order() -> None:
    html = (
        '<img src="data:image/gif;base64,R0lGODlhAQABAAAAACw=" '
        'data-original="/low.jpg" data-lazy-src="/high.jpg" data-src="">'
    )

    images = _images(sanitize(html, BASE_URL))

    assert images[0]["src"] == "https://blog.example.com/high.jpg"
    assert not set(LAZY_SRC_ATTRIBUTES) & set(images[0])


def test_srcset_first_candidate_is_used_when_src_missing() -> None:
    html = '<img data-srcset="//img.example.com/a.jpg 1x, //img.example.com/b.jpg 2x" sizes="50vw">'

    images = _images(sanitize(html, BASE_URL))

    assert images == [{"src": "https://img.example.com/a.jpg", "alt": ""}]


def test_relative_and_protocol_relative_sources_are_resolved() -> None:
    html = '<img src="../img/a.png" alt="A"><img src="//cdn.example.com/b.png" width="10" height="20">'

    images = _images(sanitize(html, BASE_URL))

    assert images[0] == {"src": "https://blog.example.com/img/a.png", "alt": "A"}
    assert images[1] == {"src": "https://cdn.example.com/b.png", "alt": ""}


def test_broken_image_in_otherwise_empty_figure_removes_figure() -> None:
    html = '<div><figure> <img src=""> </figure><p>Keep me</p></div>'

    result = sanitize(html, BASE_URL)
    soup = BeautifulSoup(result, "html.parser")

    assert soup.find("figure") is None
    assert soup.find("img") is None
    assert soup.get_text(strip=True) == "Keep me"


def test_broken_image_with_caption_keeps_figure() -> None:
    html = '<figure><img src="#"><figcaption>A caption</figcaption></figure>'

    soup = BeautifulSoup(sanitize(html, BASE_URL), "html.parser")

    assert soup.find("img") is None
    figure = soup.find("figure")
    assert figure is not None
    assert figure.get_text(strip=True) == "A caption"


def test_placeholder_images_are_removed() -> None:
    html = (
        "<section>"
        '<img src="data:image/svg+xml,%3Csvg%3E%3C/svg%3E">'
        '<img src="data:image/gif;base64,R0lGODlhAQABAIAAAAAAAP">'
        '<img src="https://cdn.example.com/real.jpg">'
        "</section>"
    )

    images = _images(sanitize(html, BASE_URL))

    assert [image["src"] for image in images] == ["https://cdn.example.com/real.jpg"]


def test_scripts_styles_and_noscript_are_removed() -> None:
    html = (
        "<div><script>alert(1)</script><style>p{}</style>"
        '<noscript><img src="https://cdn.example.com/dup.jpg"></noscript>'
        "<p>Text</p></div>"
    )

    result = sanitize(html, BASE_URL)

    assert "script" not in result
    assert "style" not in result
    assert "dup.jpg" not in result
    assert "<p>Text</p>" in result


def test_sanitize_is_idempotent() -> None:
    html = (
        "<article>"
        '<figure><img data-src="/a.jpg" srcset="/a-2x.jpg 2x" width="300"></figure>'
        '<p><img src=""></p>'
        '<img src="/_next/image?url=https%3A%2F%2Fcdn.example.com%2Fy.png&amp;w=1">'
        "<script>track()</script>"
        "</article>"
    )

    once = sanitize(html, BASE_URL)
    twice = sanitize(once, BASE_URL)

    assert once == twice


def test_malformed_fragment_does_not_raise() -> None:
    html = '<div><p>unclosed <b>bold <img src="/x.png"</div></span>'

    result = sanitize(html, BASE_URL)

    assert isinstance(result, str)
    assert sanitize("", BASE_URL) == ""


def test_resolve_url_and_broken_src_helpers() -> None:
    assert resolve_url(None, BASE_URL) is None
    assert resolve_url("  ", BASE_URL) is None
    assert resolve_url("data:image/png;base64,AAAA", BASE_URL) is None
    assert resolve_url("https://a.example.com/x", BASE_URL) == "https://a.example.com/x"
    assert resolve_url("/x.png", BASE_URL) == "https://blog.example.com/x.png"
    assert is_broken_image_src("") is True
    assert is_broken_image_src("#") is True
    assert is_broken_image_src("https://a.example.com/x.png") is False
