from __future__ import annotations

import pytest

from bindery.services.errors import (
    AllUrlsFailedError,
    DeliveryError,
    ExtractionFailure,
    FetchHttpError,
    PrivateAddressError,
)
from bindery.services.send_pipeline import EMAIL_BODY_TEXT, SendPipeline
from bindery.telemetry import TelemetryClient
from tests.fakes import (
    FakeDelivery,
    RecordingTelemetrySink,
    build_pipeline,
    chapter_names,
    epub_entries,
)


def test_prepare_article_returns_sanitized_article(pipeline: SendPipeline) -> None:
    article = pipeline.prepare_article("https://news.example.com/first")

    assert article.title == "First Article"
    assert article.site_name == "Example Site"
    assert article.source_url == "https://news.example.com/first"


def test_prepare_article_failures(pipeline: SendPipeline) -> None:
    with pytest.raises(PrivateAddressError):
        pipeline.prepare_article("http://127.0.0.1/secret")
    with pytest.raises(FetchHttpError):
        pipeline.prepare_article("https://news.example.com/missing")
    with pytest.raises(ExtractionFailure):
        pipeline.prepare_article("https://news.example.com/empty")


def test_send_single_article(pipeline: SendPipeline, fake_delivery: FakeDelivery) -> None:
    result = pipeline.send(["https://news.example.com/first"], to_address="reader@kindle.com")

    assert result.title == "First Article"
    assert result.author == "Example Site"
    assert result.subject == "Article: First Article"
    assert result.attachment_filename == "first_article.epub"
    assert result.chapter_count == 1
    assert result.failed_urls == ()

    [message] = fake_delivery.sent
    assert message["to_address"] == "reader@kindle.com"
    assert message["subject"] == "Article: First Article"
    assert message["body_text"] == EMAIL_BODY_TEXT
    assert message["attachment"].filename == "first_article.epub"
    assert len(message["attachment"].content) == result.size_bytes


def test_send_skips_failed_urls_and_keeps_order(
    web_pages: dict[str, str], fake_delivery: FakeDelivery
) -> None:
    pipeline = build_pipeline(web_pages, fake_delivery, max_workers=3)
    urls = [
        "https://news.example.com/third",
        "https://news.example.com/missing",
        "https://news.example.com/first",
        "http://192.168.1.1/router",
        "https://news.example.com/empty",
        "https://news.example.com/second",
    ]

    result = pipeline.send(urls, to_address="reader@kindle.com", title="Morning Pack")

    assert result.chapter_count == 3
    assert result.failed_urls == (
        "https://news.example.com/missing",
        "http://192.168.1.1/router",
        "https://news.example.com/empty",
    )
    assert result.subject == "Bundle: Morning Pack"
    assert result.attachment_filename == "morning_pack.epub"

    document = fake_delivery.sent[0]["attachment"].content
    names = chapter_names(document)
    assert [name.rsplit("/", 1)[-1] for name in names] == [
        "chapter_01.xhtml",
        "chapter_02.xhtml",
        "chapter_03.xhtml",
    ]
    entries = epub_entries(document)
    chapter_texts = [entries[name] for name in names]
    assert "Third Article" in chapter_texts[0]
    assert "First Article" in chapter_texts[1]
    assert "Second Article" in chapter_texts[2]


def test_send_without_title_uses_collection_title(pipeline: SendPipeline) -> None:
    result = pipeline.send(
        ["https://news.example.com/first", "https://news.example.com/second"],
        to_address="reader@kindle.com",
    )

    assert result.title == "Combined Articles"
    assert result.subject == "Bundle: Combined Articles"
    assert result.attachment_filename == "combined_articles.epub"


def test_send_fails_when_every_url_fails(
    pipeline: SendPipeline, fake_delivery: FakeDelivery
) -> None:
    urls = ["https://news.example.com/missing", "https://news.example.com/empty"]

    with pytest.raises(AllUrlsFailedError) as exc_info:
        pipeline.send(urls, to_address="reader@kindle.com")

    assert exc_info.value.failed_urls == urls
    assert fake_delivery.sent == []


def test_delivery_error_propagates(web_pages: dict[str, str]) -> None:
    pipeline = build_pipeline(web_pages, FakeDelivery(fail=True))

    with pytest.raises(DeliveryError):
        pipeline.send(["https://news.example.com/first"], to_address="reader@kindle.com")


def test_send_emits_telemetry(web_pages: dict[str, str], fake_delivery: FakeDelivery) -> None:
    sink = RecordingTelemetrySink()
    pipeline = build_pipeline(
        web_pages, fake_delivery, telemetry=TelemetryClient(enabled=True, sink=sink)
    )

    pipeline.send(
        ["https://news.example.com/first", "https://news.example.com/missing"],
        to_address="reader@kindle.com",
    )

    event_names = [name for name, _ in sink.events]
    assert event_names[0] == "send.start"
    assert "article.fetch.error" in event_names
    assert event_names[-1] == "send.finish"
    finish_fields = sink.events[-1][1]
    assert finish_fields["chapter_count"] == 1
    assert finish_fields["failed_count"] == 1
