from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from bindery import dependencies
from bindery.dependencies import reset_cached_dependencies
from bindery.main import create_app
from bindery.services.send_pipeline import SendPipeline
from tests.fakes import FakeDelivery, article_page, build_pipeline

WEB_PAGES: dict[str, str] = {
    "https://news.example.com/first": article_page("First Article"),
    "https://news.example.com/second": article_page("Second Article"),
    "https://news.example.com/third": article_page("Third Article"),
    "https://news.example.com/empty": "<div>nothing here</div>",
}


@pytest.fixture
def web_pages() -> dict[str, str]:
    return dict(WEB_PAGES)


@pytest.fixture
def fake_delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def pipeline(web_pages: dict[str, str], fake_delivery: FakeDelivery) -> SendPipeline:
    return build_pipeline(web_pages, fake_delivery)


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    pipeline: SendPipeline,
) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("BINDERY_DATA_DIR", str(data_dir))
    monkeypatch.setenv("BINDERY_SWEEPER_ENABLED", "0")
    monkeypatch.setenv("BINDERY_TELEMETRY_SINK", "none")
    monkeypatch.setenv("BINDERY_ADMIN_CONVERSATION_ID", "admin-chat")
    reset_cached_dependencies()

    original_get_send_pipeline = dependencies.get_send_pipeline
    monkeypatch.setattr(dependencies, "get_send_pipeline", lambda: pipeline)

    app = create_app()
    app.dependency_overrides[original_get_send_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client

    monkeypatch.undo()
    reset_cached_dependencies()
