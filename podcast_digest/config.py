from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".podcast-digest"
ENVIRONMENTS: frozenset[str] = frozenset({"production", "development"})
TELEMETRY_SINKS: frozenset[str] = frozenset({"none", "log", "memory"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
    ("youtube_oauth_token_path", Path("youtube-token.json")),
    ("youtube_oauth_client_secret_path", Path("youtube-client-secret.json")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "worker_enabled",
    "youtube_captions_enabled",
    "yt_dlp_enabled",
    "telemetry_enabled",
)
_OPTIONAL_SECRET_FIELDS: tuple[str, ...] = (
    "youtube_api_key",
    "spotify_client_id",
    "spotify_client_secret",
    "anthropic_api_key",
    "supadata_api_key",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{PODCAST_DIGEST_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
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
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class AppSettings(BaseSettings):
    """
    Runtime configuration, read from `PODCAST_DIGEST_*` variables and `.env`.

    Every option the service reads is declared here with its default.
    """

    model_config = SettingsConfigDict(
        env_prefix="PODCAST_DIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths and mode.
    environment: Literal["production", "development"] = Field(
        default="production",
        description="Selects the transcript source priority order and secret validation.",
    )
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database, logs, and OAuth artifacts.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )

    # YouTube.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API key used for metadata lookups and episode matching.",
    )
    youtube_oauth_token_path: Path = Field(
        default=_default_in_data_dir(Path("youtube-token.json")),
        description=(
            "OAuth token JSON for the captions API source. "
            f"{_data_dir_default_note(Path('youtube-token.json'))}"
        ),
    )
    youtube_oauth_client_secret_path: Path = Field(
        default=_default_in_data_dir(Path("youtube-client-secret.json")),
        description=(
            "OAuth client secret JSON. "
            f"{_data_dir_default_note(Path('youtube-client-secret.json'))}"
        ),
    )
    youtube_captions_enabled: bool = Field(
        default=True,
        description="Use the official captions API source when an OAuth token is present.",
    )

    # Spotify.
    spotify_client_id: str | None = Field(default=None, description="Spotify app client id.")
    spotify_client_secret: str | None = Field(
        default=None,
        description="Spotify app client secret (client-credentials flow).",
    )
    spotify_market: str = Field(default="US", description="Market used for episode lookups.")

    # Summary generation.
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key used to stream summaries.",
    )
    anthropic_model: str = Field(
        default="claude-3-7-sonnet-20250219",
        description="Model name for summary generation.",
    )
    anthropic_max_tokens: int = Field(
        default=1024,
        ge=1,
        description="Maximum tokens the model may emit per summary.",
    )
    summary_timeout_seconds: float = Field(
        default=600.0,
        description="Upper bound on a single summary generation request.",
    )

    # Transcript sources.
    supadata_api_key: str | None = Field(
        default=None,
        description="Supadata API key. The Supadata source is disabled without it.",
    )
    supadata_base_url: str = Field(
        default="https://api.supadata.ai/v1",
        description="Supadata API base URL.",
    )
    supadata_transcript_mode: str = Field(
        default="native",
        description="Supadata transcript mode passed to transcript requests.",
    )
    supadata_http_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for Supadata requests.",
    )
    supadata_poll_interval_seconds: float = Field(
        default=1.0,
        description="Polling interval for async Supadata transcript jobs.",
    )
    supadata_poll_max_attempts: int = Field(
        default=30,
        description="Maximum polling attempts for async Supadata transcript jobs.",
    )
    yt_dlp_enabled: bool = Field(
        default=True,
        description="Enable the yt-dlp subtitle download source.",
    )
    yt_dlp_binary: str | None = Field(
        default=None,
        description="yt-dlp executable; unset runs the installed yt_dlp module.",
    )
    yt_dlp_timeout_seconds: float = Field(
        default=120.0,
        description="Wall-clock limit for one yt-dlp subtitle download.",
    )
    transcript_resolve_timeout_seconds: float = Field(
        default=300.0,
        description="Overall limit on racing the transcript sources for one video.",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for Spotify metadata requests.",
    )

    # Episode matching.
    match_threshold: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum candidate score for a YouTube video to count as a match.",
    )
    match_results_per_query: int = Field(
        default=5,
        ge=1,
        le=50,
        description="YouTube search results scored per query.",
    )

    # Worker, queue, and timeouts.
    worker_enabled: bool = Field(
        default=True,
        description="Run the background queue worker and timeout sweeper inside the API process.",
    )
    worker_poll_interval_seconds: float = Field(
        default=2.0,
        description="Queue polling cadence.",
    )
    timeout_sweep_interval_seconds: float = Field(
        default=300.0,
        description="Timeout sweeper cadence, independent from the queue cadence.",
    )
    queue_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Deliveries of one job before it is dead-lettered.",
    )
    queue_backoff_base_seconds: float = Field(
        default=5.0,
        description="Base for exponential redelivery backoff.",
    )
    queue_lease_seconds: float = Field(
        default=900.0,
        description="How long a claimed job stays invisible to other workers.",
    )
    timeout_in_queue_seconds: int = Field(
        default=3_600,
        description="Time a summary may stay in_queue before it is failed.",
    )
    timeout_fetching_transcript_seconds: int = Field(
        default=7_200,
        description="Time a summary may stay fetching_transcript before it is failed.",
    )
    timeout_generating_summary_seconds: int = Field(
        default=14_400,
        description="Time a summary may stay generating_summary before it is failed.",
    )
    timeout_default_seconds: int = Field(
        default=7_200,
        description="Threshold for any in-progress status without its own setting.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(default="INFO", description="Console log level (stdout).")

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log", "memory"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` writes structured events to the telemetry log, "
            "`memory` keeps them in process, and `none` drops them."
        ),
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PODCAST_DIGEST_ENVIRONMENT must be a string.")
        normalized = value.strip().lower()
        if normalized in ENVIRONMENTS:
            return normalized
        raise ValueError("PODCAST_DIGEST_ENVIRONMENT must be set to: production, development.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PODCAST_DIGEST_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in TELEMETRY_SINKS:
            return normalized
        raise ValueError("PODCAST_DIGEST_TELEMETRY_SINK must be set to: none, log, memory.")

    @field_validator("supadata_base_url", mode="before")
    @classmethod
    def _normalize_supadata_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("PODCAST_DIGEST_SUPADATA_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("PODCAST_DIGEST_SUPADATA_BASE_URL must not be empty.")
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

    @field_validator(*_OPTIONAL_SECRET_FIELDS, mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_production_secrets(settings: AppSettings) -> None:
    errors: list[str] = []
    if settings.anthropic_api_key is None:
        errors.append("PODCAST_DIGEST_ANTHROPIC_API_KEY is required to generate summaries.")
    if settings.youtube_api_key is None:
        errors.append("PODCAST_DIGEST_YOUTUBE_API_KEY is required for YouTube metadata.")
    if settings.spotify_client_id is None or settings.spotify_client_secret is None:
        errors.append(
            "PODCAST_DIGEST_SPOTIFY_CLIENT_ID and PODCAST_DIGEST_SPOTIFY_CLIENT_SECRET "
            "are required for Spotify episodes."
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid production configuration:\n{bullets}")


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


def load_settings(*, validate_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_secrets and settings.environment == "production":
        _validate_production_secrets(settings)

    return settings
