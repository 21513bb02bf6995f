from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from bindery.dependencies import get_conversation_service, get_send_pipeline
from bindery.models.contracts import (
    ConversationCommandRequest,
    ConversationMessageRequest,
    ConversationResponse,
    ExtractResponse,
    SendRequest,
    SendResponse,
)
from bindery.services.conversation_service import ConversationService, validate_email
from bindery.services.errors import (
    AllUrlsFailedError,
    AssemblyTooLargeError,
    BinderyError,
    DeliveryError,
    ExtractionFailure,
    FetchFailure,
    InvalidInputError,
    MissingDestinationError,
)
from bindery.services.send_pipeline import SendPipeline

router = APIRouter()

_ERROR_STATUS_CODES: tuple[tuple[type[BinderyError], int], ...] = (
    (InvalidInputError, 400),
    (MissingDestinationError, 409),
    (AssemblyTooLargeError, 413),
    (AllUrlsFailedError, 422),
    (ExtractionFailure, 422),
    (FetchFailure, 502),
    (DeliveryError, 502),
)


def error_status_code(exc: BinderyError) -> int:
    for error_type, status_code in _ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _raise_http_error(exc: BinderyError) -> NoReturn:
    raise HTTPException(status_code=error_status_code(exc), detail=str(exc)) from exc


@router.get(
    "/api/extract",
    response_model=ExtractResponse,
    tags=["articles"],
    operation_id="extract_article",
)
def extract_article(
    pipeline: Annotated[SendPipeline, Depends(get_send_pipeline)],
    url: Annotated[str | None, Query(max_length=2048)] = None,
) -> ExtractResponse:
    if url is None or not url.strip():
        raise HTTPException(status_code=400, detail="URL is required")

    context_tokens = bind_contextvars(article_url=url.strip())
    try:
        article = pipeline.prepare_article(url.strip())
    except BinderyError as exc:
        _raise_http_error(exc)
    finally:
        reset_contextvars(**context_tokens)

    return ExtractResponse(
        url=article.source_url,
        title=article.title,
        byline=article.byline,
        site_name=article.site_name,
        excerpt=article.excerpt,
        content_html=article.content_html,
    )


@router.post(
    "/api/send",
    response_model=SendResponse,
    tags=["articles"],
    operation_id="send_to_kindle",
)
def send_to_kindle(
    request: SendRequest,
    pipeline: Annotated[SendPipeline, Depends(get_send_pipeline)],
    conversations: Annotated[ConversationService, Depends(get_conversation_service)],
) -> SendResponse:
    try:
        if request.email is not None:
            to_address = validate_email(request.email)
        elif request.conversation_id is not None:
            to_address = conversations.destination_for(request.conversation_id)
        else:
            raise MissingDestinationError("Either email or conversation_id is required.")

        result = pipeline.send(
            request.urls,
            to_address=to_address,
            title=request.title,
            author=request.author,
        )
    except BinderyError as exc:
        _raise_http_error(exc)

    return SendResponse(
        ok=True,
        title=result.title,
        author=result.author,
        subject=result.subject,
        attachment_filename=result.attachment_filename,
        size_bytes=result.size_bytes,
        chapter_count=result.chapter_count,
        failed_urls=list(result.failed_urls),
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationResponse,
    tags=["conversations"],
    operation_id="post_conversation_message",
)
def post_conversation_message(
    conversation_id: str,
    request: ConversationMessageRequest,
    conversations: Annotated[ConversationService, Depends(get_conversation_service)],
) -> ConversationResponse:
    context_tokens = bind_contextvars(conversation_id=conversation_id)
    try:
        replies = conversations.handle_text(conversation_id, request.text)
    finally:
        reset_contextvars(**context_tokens)
    return ConversationResponse.from_replies(conversation_id, replies)


@router.post(
    "/conversations/{conversation_id}/commands",
    response_model=ConversationResponse,
    tags=["conversations"],
    operation_id="post_conversation_command",
)
def post_conversation_command(
    conversation_id: str,
    request: ConversationCommandRequest,
    conversations: Annotated[ConversationService, Depends(get_conversation_service)],
) -> ConversationResponse:
    context_tokens = bind_contextvars(conversation_id=conversation_id)
    try:
        replies = conversations.on_collection_command(
            conversation_id,
            request.command,
            request.argument,
            via_action=request.via_action,
        )
    finally:
        reset_contextvars(**context_tokens)
    return ConversationResponse.from_replies(conversation_id, replies)
