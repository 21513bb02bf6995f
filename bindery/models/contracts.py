from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bindery.services.conversation_service import BotReply

MAX_URLS_PER_SEND = 20


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


def _default_actions() -> list[BotActionModel]:
    return []


class ExtractResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    title: str
    byline: str | None = None
    site_name: str | None = None
    excerpt: str | None = None
    content_html: str


class SendRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    urls: list[str] = Field(min_length=1, max_length=MAX_URLS_PER_SEND)
    email: str | None = Field(default=None, max_length=320)
    conversation_id: str | None = Field(default=None, max_length=120)
    title: str | None = Field(default=None, max_length=500)
    author: str | None = Field(default=None, max_length=500)

    @field_validator("urls")
    @classmethod
    def _normalize_urls(cls, value: list[str]) -> list[str]:
        normalized = [item.strip() for item in value if item.strip()]
        if not normalized:
            raise ValueError("urls must contain at least one non-empty URL")
        return normalized

    @field_validator("email", "conversation_id", "title", "author", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class SendResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    title: str
    author: str
    subject: str
    attachment_filename: str
    size_bytes: int
    chapter_count: int
    failed_urls: list[str]


class ConversationMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(min_length=1, max_length=4000)


class ConversationCommandRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1, max_length=64)
    argument: str | None = Field(default=None, max_length=1000)
    via_action: bool = False


class BotActionModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: str
    command: str
    argument: str | None = None


class BotReplyModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    actions: list[BotActionModel] = Field(default_factory=_default_actions)


class ConversationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    conversation_id: str
    replies: list[BotReplyModel]

    @classmethod
    def from_replies(cls, conversation_id: str, replies: list[BotReply]) -> ConversationResponse:
        return cls(
            conversation_id=conversation_id,
            replies=[
                BotReplyModel(
                    text=reply.text,
                    actions=[
                        BotActionModel(
                            label=action.label,
                            command=action.command,
                            argument=action.argument,
                        )
                        for action in reply.actions
                    ],
                )
                for reply in replies
            ],
        )
