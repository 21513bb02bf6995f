from __future__ import annotations

from functools import lru_cache

from bindery.config import AppSettings, load_settings
from bindery.repositories.bind_history_repository import BindHistoryRepository
from bindery.repositories.database import Database
from bindery.repositories.destination_repository import DestinationRepository
from bindery.services.article_fetcher import ArticleFetcher
from bindery.services.collection_sessions import CollectionSessionStore
from bindery.services.conversation_service import ConversationService
from bindery.services.delivery import SmtpDelivery
from bindery.services.ebook_assembler import EbookAssembler
from bindery.services.send_pipeline import SendPipeline
from bindery.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_session_store() -> CollectionSessionStore:
    settings = get_settings()
    return CollectionSessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        max_urls=settings.session_max_urls,
    )


@lru_cache(maxsize=1)
def get_send_pipeline() -> SendPipeline:
    settings = get_settings()
    return SendPipeline(
        fetcher=ArticleFetcher(
            timeout_seconds=settings.fetch_timeout_seconds,
            max_bytes=settings.fetch_max_bytes,
            user_agent=settings.fetch_user_agent,
        ),
        assembler=EbookAssembler(max_bytes=settings.epub_max_bytes),
        delivery=SmtpDelivery(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            timeout_seconds=settings.smtp_timeout_seconds,
        ),
        telemetry=get_telemetry(),
        max_workers=settings.fetch_max_workers,
    )


@lru_cache(maxsize=1)
def get_conversation_service() -> ConversationService:
    settings = get_settings()
    database = get_database()
    return ConversationService(
        sessions=get_session_store(),
        pipeline=get_send_pipeline(),
        destinations=DestinationRepository(database),
        history=BindHistoryRepository(database, max_entries=settings.history_max_entries),
        admin_conversation_id=settings.admin_conversation_id,
    )


def reset_cached_dependencies() -> None:
    get_conversation_service.cache_clear()
    get_send_pipeline.cache_clear()
    get_session_store.cache_clear()
    get_telemetry.cache_clear()
    get_database.cache_clear()
    get_settings.cache_clear()
