from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlparse

from bindery.logging_config import InteractionKind, log_interaction
from bindery.repositories.bind_history_repository import BindHistoryEntry, BindHistoryRepository
from bindery.repositories.destination_repository import DestinationRepository
from bindery.services.collection_sessions import (
    CollectionSessionStore,
    SessionBusyError,
    SessionSnapshot,
    SessionState,
)
from bindery.services.errors import BinderyError, InvalidEmailError, MissingDestinationError
from bindery.services.send_pipeline import SendPipeline, SendResult

LOGGER = logging.getLogger("bindery.conversation")

URL_PATTERN = re.compile(r"(https?://[^\s]+)")
URL_TRAILING_PUNCTUATION = ".,;:!?)\"'"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")
HISTORY_LIST_LIMIT = 8
HISTORY_URL_DISPLAY_CHARS = 45

WELCOME_TEXT = (
    "📚 Welcome to Send to Kindle!\n\n"
    "I can help you turn web articles into beautiful ebooks for your Kindle."
)
HELP_TEXT = (
    "Commands:\n"
    "/setemail <email> - Set your Kindle email\n"
    "/unsetemail - Clear your Kindle email\n"
    "/bind - Start a multi-article collection\n"
    "/done - Finish and send collection\n"
    "/cancel - Cancel active session\n"
    "/history - View and resend past collections\n"
    "/status - Check your settings\n\n"
    "Or just send any link to send it instantly!"
)
MISSING_EMAIL_TEXT = "❌ Please set your Kindle email first: /setemail yourname@kindle.com"
BUSY_TEXT = "⏳ Your collection is being sent. Please wait."
NO_HISTORY_TEXT = "📚 No past collections yet.\n\nUse /bind to create one!"


@dataclass(frozen=True)
class BotAction:
    """A follow-up the transport can offer as a button."""

    label: str
    command: str
    argument: str | None = None


@dataclass(frozen=True)
class BotReply:
    text: str
    actions: tuple[BotAction, ...] = ()


FINISH_ACTION = BotAction(label="✅ Finish & Send", command="done")
CANCEL_ACTION = BotAction(label="❌ Cancel", command="cancel")
HISTORY_ACTION = BotAction(label="« Back to History", command="history")


def find_url(text: str) -> str | None:
    """Return the first http(s) URL in ``text`` without trailing punctuation."""
    match = URL_PATTERN.search(text)
    if match is None:
        return None
    url = match.group(1).rstrip(URL_TRAILING_PUNCTUATION)
    return url or None


def validate_email(value: str) -> str:
    candidate = value.strip()
    if not EMAIL_PATTERN.match(candidate):
        raise InvalidEmailError("That doesn't look like a valid email.")
    return candidate


def failed_urls_suffix(result: SendResult) -> str:
    if not result.failed_urls:
        return ""
    return f"\n⚠️ {len(result.failed_urls)} URL(s) could not be fetched and were skipped."


def format_history_url(url: str) -> str:
    try:
        parsed = urlparse(url)
        display = f"{parsed.hostname}{parsed.path}" if parsed.hostname else url
    except ValueError:
        display = url
    if len(display) > HISTORY_URL_DISPLAY_CHARS:
        return f"{display[: HISTORY_URL_DISPLAY_CHARS - 1]}…"
    return display


def _plural_articles(count: int) -> str:
    return f"{count} article{'s' if count != 1 else ''}"


def _format_sent_date(sent_at: str) -> str:
    try:
        value = datetime.fromisoformat(sent_at)
    except ValueError:
        return sent_at
    return f"{value:%b} {value.day}, {value.year}"


class ConversationService:
    """Turns inbound conversation events into pipeline calls and bot replies.

    Transports call :meth:`handle_text` for free text and
    :meth:`on_collection_command` for commands and button presses; every
    call returns the replies to render, in order.
    """

    def __init__(
        self,
        *,
        sessions: CollectionSessionStore,
        pipeline: SendPipeline,
        destinations: DestinationRepository,
        history: BindHistoryRepository,
        admin_conversation_id: str | None = None,
    ) -> None:
        self._sessions = sessions
        self._pipeline = pipeline
        self._destinations = destinations
        self._history = history
        self._admin_conversation_id = admin_conversation_id

    def destination_for(self, conversation_id: str) -> str:
        email = self._destinations.get_email(conversation_id)
        if email is None:
            raise MissingDestinationError("No Kindle email is set for this conversation.")
        return email

    def handle_text(self, conversation_id: str, text: str) -> list[BotReply]:
        log_interaction(conversation_id, InteractionKind.TEXT, text)
        session = self._sessions.get(conversation_id)
        if (
            session is not None
            and session.state is SessionState.AWAITING_TITLE
            and not text.startswith("/")
        ):
            return self.on_text_during_session(conversation_id, text)

        url = find_url(text)
        if url is None:
            return []
        return self.on_url_submitted(conversation_id, url)

    def on_text_during_session(self, conversation_id: str, text: str) -> list[BotReply]:
        title = text.strip()
        if not title:
            return [BotReply("Please send me the TITLE for this collection.")]
        snapshot = self._sessions.set_title(conversation_id, title)
        if snapshot is None:
            return []
        return [
            BotReply(
                f'Title set: "{snapshot.title}".\n\nNow send me the links one by one.',
                (CANCEL_ACTION,),
            )
        ]

    def on_url_submitted(self, conversation_id: str, url: str) -> list[BotReply]:
        outcome = self._sessions.add_url(conversation_id, url)
        if outcome is not None:
            if outcome.busy:
                return [BotReply(BUSY_TEXT)]
            if not outcome.accepted:
                return [
                    BotReply(
                        f"Maximum {self._sessions.max_urls} articles per collection. "
                        "Tap ✅ Finish & Send to proceed.",
                        (FINISH_ACTION, CANCEL_ACTION),
                    )
                ]
            return [BotReply(f"Added ({outcome.count}): {url}", (FINISH_ACTION, CANCEL_ACTION))]

        try:
            email = self.destination_for(conversation_id)
        except MissingDestinationError:
            return [BotReply(MISSING_EMAIL_TEXT)]

        replies = [BotReply("Processing article...")]
        try:
            self._pipeline.send([url], to_address=email)
        except BinderyError as exc:
            LOGGER.warning(
                "single article send failed conversation_id=%s error_type=%s",
                conversation_id,
                type(exc).__name__,
            )
            replies.append(
                BotReply("❌ Failed to send article. Please check the URL and try again.")
            )
            return replies
        replies.append(BotReply("✅ Article sent to your Kindle!"))
        return replies

    def on_collection_command(
        self,
        conversation_id: str,
        command: str,
        argument: str | None = None,
        *,
        via_action: bool = False,
    ) -> list[BotReply]:
        normalized = command.strip().lstrip("/").lower()
        log_interaction(
            conversation_id,
            InteractionKind.ACTION if via_action else InteractionKind.COMMAND,
            normalized if via_action else f"/{normalized}",
        )
        handler = {
            "start": self._start,
            "help": self._help,
            "status": self._status,
            "setemail": self._set_email,
            "unsetemail": self._unset_email,
            "bind": self._bind,
            "done": self._finish,
            "finish": self._finish,
            "cancel": self._cancel,
            "history": self._history_list,
            "view": self._history_view,
            "resend": self._history_resend,
            "extend": self._history_extend,
            "debug_session": self._debug_session,
        }.get(normalized)
        if handler is None:
            return [BotReply("Unknown command. Send /help to see what I can do.")]
        return handler(conversation_id, (argument or "").strip())

    def _start(self, conversation_id: str, _argument: str) -> list[BotReply]:
        return [
            BotReply(
                WELCOME_TEXT,
                (
                    BotAction(label="📋 Check Status", command="status"),
                    BotAction(label="📚 Bind History", command="history"),
                    BotAction(label="📖 How to use?", command="help"),
                ),
            )
        ]

    def _help(self, conversation_id: str, _argument: str) -> list[BotReply]:
        return [BotReply(HELP_TEXT)]

    def _status(self, conversation_id: str, _argument: str) -> list[BotReply]:
        email = self._destinations.get_email(conversation_id)
        if email is not None:
            return [BotReply(f"Status:\n✅ Kindle Email: {email}")]
        return [BotReply("Status:\n❌ No Kindle email set. Use /setemail yourname@kindle.com")]

    def _set_email(self, conversation_id: str, argument: str) -> list[BotReply]:
        candidate = argument.split()[0] if argument else ""
        try:
            email = validate_email(candidate)
        except InvalidEmailError:
            return [BotReply("Usage: /setemail yourname@kindle.com")]
        self._destinations.set_email(conversation_id, email)
        return [BotReply(f"✅ Kindle email set to: {email}")]

    def _unset_email(self, conversation_id: str, _argument: str) -> list[BotReply]:
        if not self._destinations.clear_email(conversation_id):
            return [BotReply("No Kindle email is currently set.")]
        return [BotReply("✅ Kindle email cleared.")]

    def _bind(self, conversation_id: str, _argument: str) -> list[BotReply]:
        outcome = self._sessions.start(conversation_id)
        if not outcome.created:
            return [
                BotReply(
                    "You already have an active session. Finish it or cancel it first.",
                    (FINISH_ACTION, CANCEL_ACTION),
                )
            ]
        return [BotReply("📚 Binding mode activated! Please send me the TITLE for this collection.")]

    def _finish(self, conversation_id: str, _argument: str) -> list[BotReply]:
        session = self._sessions.get(conversation_id)
        if session is None:
            return [BotReply("No active session.")]
        if session.flushing:
            return [BotReply(BUSY_TEXT)]
        if not session.urls:
            return [BotReply("Add some links first!")]

        try:
            email = self.destination_for(conversation_id)
        except MissingDestinationError:
            return [BotReply(MISSING_EMAIL_TEXT)]

        try:
            flushing = self._sessions.begin_flush(conversation_id)
        except SessionBusyError:
            return [BotReply(BUSY_TEXT)]
        if flushing is None or not flushing.urls:
            return [BotReply("No active session.")]

        replies = [
            BotReply(f'🚀 Processing {len(flushing.urls)} articles for "{flushing.title}"...')
        ]
        succeeded = False
        try:
            result = self._pipeline.send(
                list(flushing.urls), to_address=email, title=flushing.title
            )
            succeeded = True
        except BinderyError as exc:
            LOGGER.warning(
                "collection send failed conversation_id=%s error_type=%s",
                conversation_id,
                type(exc).__name__,
            )
            replies.append(
                BotReply("❌ Failed to send collection. Please check the URLs and try again.")
            )
            return replies
        finally:
            self._sessions.finish_flush(conversation_id, succeeded=succeeded)

        self._history.add_entry(conversation_id, title=flushing.title, urls=flushing.urls)
        replies.append(BotReply(f"✅ Collection sent to your Kindle!{failed_urls_suffix(result)}"))
        return replies

    def _cancel(self, conversation_id: str, _argument: str) -> list[BotReply]:
        try:
            cancelled = self._sessions.cancel(conversation_id)
        except SessionBusyError:
            return [BotReply(BUSY_TEXT)]
        if not cancelled:
            return [BotReply("No active session to cancel.")]
        return [BotReply("❌ Binding session cancelled.")]

    def _history_list(self, conversation_id: str, _argument: str) -> list[BotReply]:
        entries = self._history.list_entries(conversation_id)
        if not entries:
            return [BotReply(NO_HISTORY_TEXT)]
        actions = tuple(
            BotAction(
                label=f"📖 {entry.title} ({len(entry.urls)})",
                command="view",
                argument=entry.id,
            )
            for entry in entries[:HISTORY_LIST_LIMIT]
        )
        return [BotReply(f"📚 Past Collections ({len(entries)})\n\nTap one to view details:", actions)]

    def _history_view(self, conversation_id: str, argument: str) -> list[BotReply]:
        entry = self._find_entry(conversation_id, argument)
        if entry is None:
            return [BotReply("Collection not found.")]
        url_lines = "\n".join(
            f"{index}. {format_history_url(url)}" for index, url in enumerate(entry.urls, start=1)
        )
        text = (
            f"📖 {entry.title}\n"
            f"Sent {_format_sent_date(entry.sent_at)} · {_plural_articles(len(entry.urls))}\n\n"
            f"{url_lines}"
        )
        return [
            BotReply(
                text,
                (
                    BotAction(label="✉️ Resend", command="resend", argument=entry.id),
                    BotAction(label="➕ Add Articles", command="extend", argument=entry.id),
                    HISTORY_ACTION,
                ),
            )
        ]

    def _history_resend(self, conversation_id: str, argument: str) -> list[BotReply]:
        entry = self._find_entry(conversation_id, argument)
        if entry is None:
            return [BotReply("Collection not found.")]
        try:
            email = self.destination_for(conversation_id)
        except MissingDestinationError:
            return [BotReply(MISSING_EMAIL_TEXT)]

        replies = [
            BotReply(f'🚀 Resending "{entry.title}" ({_plural_articles(len(entry.urls))})…')
        ]
        try:
            result = self._pipeline.send(list(entry.urls), to_address=email, title=entry.title)
        except BinderyError as exc:
            LOGGER.warning(
                "history resend failed conversation_id=%s entry_id=%s error_type=%s",
                conversation_id,
                entry.id,
                type(exc).__name__,
            )
            replies.append(BotReply("❌ Failed to resend. Please try again."))
            return replies

        self._history.add_entry(conversation_id, title=entry.title, urls=entry.urls)
        replies.append(
            BotReply(f'✅ "{entry.title}" resent to your Kindle!{failed_urls_suffix(result)}')
        )
        return replies

    def _history_extend(self, conversation_id: str, argument: str) -> list[BotReply]:
        entry = self._find_entry(conversation_id, argument)
        if entry is None:
            return [BotReply("Collection not found.")]
        try:
            snapshot = self._sessions.seed(conversation_id, title=entry.title, urls=entry.urls)
        except SessionBusyError:
            return [BotReply(BUSY_TEXT)]
        return [
            BotReply(
                f'➕ Extending "{snapshot.title}"\n\n'
                f"{_plural_articles(len(snapshot.urls))} already loaded. "
                "Send more links, then tap Finish.",
                (FINISH_ACTION, CANCEL_ACTION),
            )
        ]

    def _debug_session(self, conversation_id: str, _argument: str) -> list[BotReply]:
        if self._admin_conversation_id is None or conversation_id != self._admin_conversation_id:
            return [BotReply("⛔ Admin only.")]
        session = self._sessions.get(conversation_id)
        return [BotReply(f"Current Session: {_describe_session(session)}")]

    def _find_entry(self, conversation_id: str, entry_id: str) -> BindHistoryEntry | None:
        if not entry_id:
            return None
        return self._history.get_entry(conversation_id, entry_id)


def _describe_session(session: SessionSnapshot | None) -> str:
    if session is None:
        return "None"
    return json.dumps(
        {
            "state": session.state.value,
            "title": session.title,
            "urls": list(session.urls),
            "created_at": session.created_at.isoformat(),
            "flushing": session.flushing,
        },
        ensure_ascii=False,
    )
