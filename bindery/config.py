from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".bindery"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124 Safari/537.36"
)
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "sweeper_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{BINDERY_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `BINDERY_*` environment variable (or `.env`)
    and documented here together with its default.
    """

    model_config = SettingsConfigDict(
        env_prefix="BINDERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # Fetching.
    fetch_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout for article fetches.",
    )
    fetch_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Maximum response body size accepted for one article page.",
    )
    fetch_user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent when fetching article pages.",
    )
    fetch_max_workers: int = Field(
        default=4,
        ge=1,
        le=20,
        description="Bounded parallelism for fetching the URLs of one multi-article send.",
    )

    # Assembly.
    epub_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Maximum packaged EPUB size; larger books fail instead of being truncated.",
    )

    # Collection sessions and history.
    session_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Age after which an idle collection session is reclaimed.",
    )
    session_sweep_interval_seconds: int = Field(
        default=600,
        ge=1,
        description="Cadence of the background session sweep.",
    )
    session_max_urls: int = Field(
        default=20,
        ge=1,
        description="Maximum number of URLs one collection may hold.",
    )
    history_max_entries: int = Field(
        default=20,
        ge=1,
        description="Number of bind history entries retained per conversation.",
    )
    sweeper_enabled: bool = Field(
        default=True,
        description="Run the session sweep thread while the app is up.",
    )
    admin_conversation_id: str | None = Field(
        default=None,
        description="Conversation allowed to run the `debug_session` command.",
    )

    # Delivery.
    smtp_host: str | None = Field(
        default=None,
        description="SMTP server host used to deliver ebooks.",
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP port. 465 uses implicit TLS, anything else uses STARTTLS.",
    )
    smtp_username: str | None = Field(
        default=None,
        description="SMTP login user.",
    )
    smtp_password: str | None = Field(
        default=None,
        description="SMTP login password.",
    )
    smtp_from: str | None = Field(
        default=None,
        description="Sender address. Defaults to the SMTP username when unset.",
    )
    smtp_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Socket timeout for SMTP sessions.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("BINDERY_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("BINDERY_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("BINDERY_LOG_LEVEL must be a non-empty string.")
        return value.strip().upper()

    @field_validator("fetch_user_agent", mode="before")
    @classmethod
    def _normalize_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("BINDERY_FETCH_USER_AGENT must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("BINDERY_FETCH_USER_AGENT must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_from",
        "admin_conversation_id",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
