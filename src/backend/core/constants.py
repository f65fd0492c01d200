"""
Constants and configuration for toolchat.
Tunable numbers for the chat loop, MCP servers and logging, the model
catalog, and the validated ``Settings`` read from the environment.
"""

from __future__ import annotations

import os
import threading

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, get_args

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import (
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
)

# ============================================================================
# Project Paths
# ============================================================================

#: Repository root; logs/ lives here
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

#: Directory for rotating JSON log files
LOG_DIR = PROJECT_ROOT / "logs"

# ============================================================================
# Model catalog
# ============================================================================


@dataclass(frozen=True, slots=True)
class ModelConfig:
    """One selectable model and the options forwarded with its requests.

    Attributes:
        id: API model name (e.g., "gpt-4.1-mini")
        display_name: Human-readable name for UI
        description: One line shown next to the model in the UI picker
        provider_options: Opaque provider tuning knobs sent with every request
            for this model (e.g. a reasoning budget). Never interpreted here.
    """

    id: str
    display_name: str
    description: str
    provider_options: dict[str, Any] = field(default_factory=dict)


#: Master model configuration. Order determines display order in the model selector.
MODEL_CONFIGS: tuple[ModelConfig, ...] = (
    ModelConfig("gpt-4.1-mini", "GPT-4.1 Mini", "Fast and capable for everyday tool use"),
    ModelConfig("gpt-4.1", "GPT-4.1", "Strong general model with reliable tool calling"),
    ModelConfig("o4-mini", "o4-mini", "Reasoning model", {"reasoning_effort": "medium"}),
    ModelConfig(
        "claude-sonnet-4",
        "Claude Sonnet 4",
        "Via OpenAI-compatible gateway, extended thinking enabled",
        {"thinking": {"type": "enabled", "budget_tokens": 12000}},
    ),
    ModelConfig(
        "gemini-2.5-flash",
        "Gemini 2.5 Flash",
        "Via OpenAI-compatible gateway, thinking budget enabled",
        {"google": {"thinking_config": {"thinking_budget": 2048}}},
    ),
)

#: Default model when the request does not select one
DEFAULT_MODEL = MODEL_CONFIGS[0].id

#: Lookup of opaque provider options by model id (derived from MODEL_CONFIGS)
MODEL_PROVIDER_OPTIONS: dict[str, dict[str, Any]] = {m.id: m.provider_options for m in MODEL_CONFIGS}

# ============================================================================
# Orchestration Configuration
# ============================================================================

#: Maximum model turns per chat request. At the last step the model is asked
#: for a closing answer with tool access disabled.
MAX_STEPS = 20

#: User-facing message for rate-limited model calls.
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."

#: User-facing message for any other model failure.
GENERIC_ERROR_MESSAGE = "An error occurred."

#: Content returned to the model when a tool name is not in the tool table.
UNKNOWN_TOOL_REASON = "Tool '{name}' is not available"

# ============================================================================
# MCP servers
# ============================================================================

#: Readiness probe attempts before a server is reported unreachable.
#: One bounded value is used for both the lifecycle start path and the chat path.
MCP_READY_MAX_ATTEMPTS = 5

#: Fixed delay between readiness probe attempts (seconds).
MCP_READY_INTERVAL = 6.0

#: Timeout for a single readiness GET (seconds).
MCP_READY_REQUEST_TIMEOUT = 5.0

#: Timeout for opening a transport and completing the MCP handshake (seconds).
MCP_CONNECT_TIMEOUT = 30.0

#: Timeout for tools/list (seconds).
MCP_LIST_TOOLS_TIMEOUT = 30.0

#: Timeout for a single tools/call (seconds). Tools doing network work can be slow.
MCP_CALL_TOOL_TIMEOUT = 60.0

#: Grace period before a spawned local server process is killed (seconds).
SANDBOX_TERMINATE_TIMEOUT = 5.0

#: MCP protocol version sent in the WebSocket handshake.
MCP_PROTOCOL_VERSION = "2024-11-05"

#: Client name reported to MCP servers during initialization.
MCP_CLIENT_NAME = "toolchat"

# ============================================================================
# Logging Configuration
# ============================================================================

#: Rotate a JSON log file once it reaches 10 MiB.
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of application log backups to retain during rotation.
LOG_BACKUP_COUNT_APP = 5

#: Rotated errors.jsonl files kept on disk.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters to show in log previews for tool arguments/results.
LOG_PREVIEW_LENGTH = 50

#: Length of the per-process logger id.
SESSION_ID_LENGTH = 8

# ============================================================================
# Settings
# ============================================================================

#: Deployment environments; each may ship its own ``.env.{name}`` file
Environment = Literal["development", "production", "test"]
ENVIRONMENTS: tuple[str, ...] = get_args(Environment)

#: Directory holding the dotenv chain (src/backend)
ENV_DIR = Path(__file__).parent.parent


def _current_env() -> str:
    name = os.getenv("APP_ENV", "development").lower()
    return name if name in ENVIRONMENTS else "development"


def _get_env_files() -> list[Path]:
    """Existing dotenv files, lowest priority first: ``.env``, ``.env.{APP_ENV}``, ``.env.local``."""
    chain = (".env", f".env.{_current_env()}", ".env.local")
    return [path for path in (ENV_DIR / name for name in chain) if path.exists()]


def _load_env_chain() -> None:
    """Push the dotenv chain into ``os.environ`` so later files override earlier ones."""
    from dotenv import load_dotenv

    for path in _get_env_files():
        load_dotenv(path, override=True)


class Settings(BaseSettings):
    """Runtime configuration, validated once at startup.

    Sources in priority order: constructor arguments, environment variables,
    then the dotenv chain. Defaults come from the module constants above.
    """

    app_env: Environment = Field(default="development", description="Deployment environment")

    # Model provider (OpenAI or any Chat Completions compatible gateway)
    openai_api_key: str | None = Field(default=None, description="API key for the model provider")
    openai_base_url: str | None = Field(default=None, description="Base URL for an OpenAI-compatible gateway")
    default_model: str = Field(default=DEFAULT_MODEL, description="Model used when a request selects none")
    max_steps: int = Field(default=MAX_STEPS, description="Maximum model turns per chat request")
    http_read_timeout: float = Field(default=600.0, description="Read timeout for model streams (seconds)")

    # MCP servers
    mcp_ready_max_attempts: int = Field(default=MCP_READY_MAX_ATTEMPTS, description="Readiness probe attempts")
    mcp_ready_interval: float = Field(default=MCP_READY_INTERVAL, description="Delay between probes (seconds)")
    mcp_connect_timeout: float = Field(default=MCP_CONNECT_TIMEOUT, description="MCP connect timeout (seconds)")
    mcp_call_tool_timeout: float = Field(default=MCP_CALL_TOOL_TIMEOUT, description="MCP tool call timeout (seconds)")
    mcp_list_tools_timeout: float = Field(default=MCP_LIST_TOOLS_TIMEOUT, description="MCP tools/list timeout (s)")

    # Logging
    debug: bool = Field(default=False, description="Debug console logging and debug blocks in error responses")
    http_request_logging: bool = Field(default=False, description="Log model provider HTTP traffic")
    enable_content_logging: bool = Field(default=False, description="Log redacted tool arguments and results")

    # Serving
    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=8000, description="Bind port")
    app_version: str = Field(default="1.0.0", description="Version reported by /health")
    config_hot_reload: bool = Field(default=False, description="Re-read settings on every access (development)")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        env_chain = DotEnvSettingsSource(settings_cls, env_file=_get_env_files(), env_file_encoding="utf-8")
        return (init_settings, env_settings, env_chain)

    @field_validator("app_env", mode="before")
    @classmethod
    def validate_app_env(cls, v: str | None) -> str:
        name = "development" if v is None else str(v).lower()
        if name not in ENVIRONMENTS:
            raise ValueError(f"app_env must be one of {', '.join(ENVIRONMENTS)}; got '{v}'")
        return name

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str | None) -> str | None:
        if v is not None and len(v) < 10:
            raise ValueError("Invalid OpenAI API key format")
        return v

    @field_validator("max_steps", "mcp_ready_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("mcp_ready_interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v < 0:
            raise ValueError("mcp_ready_interval cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_provider_credentials(self) -> Settings:
        if not self.openai_api_key:
            raise ValueError(
                "Configuration Error: openai_api_key is required. "
                "Set OPENAI_API_KEY in the environment or a .env file."
            )
        if self.app_env == "production" and self.config_hot_reload:
            raise ValueError("Configuration Error: config_hot_reload must be False in production.")
        return self

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


class _SettingsCache:
    """One shared ``Settings`` instance, rebuilt on every access while hot reload is on."""

    def __init__(self) -> None:
        self._settings: Settings | None = None
        self._lock = threading.Lock()

    def _fresh(self) -> Settings | None:
        settings = self._settings
        return settings if settings is not None and not settings.config_hot_reload else None

    def get(self) -> Settings:
        cached = self._fresh()
        if cached is not None:
            return cached
        with self._lock:
            # Another thread may have built it while we waited
            return self._fresh() or self._build()

    def reload(self) -> Settings:
        with self._lock:
            return self._build()

    def clear(self) -> None:
        with self._lock:
            self._settings = None

    def _build(self) -> Settings:
        _load_env_chain()
        self._settings = Settings()
        return self._settings


_settings_cache = _SettingsCache()


def get_settings() -> Settings:
    """The application settings.

    Raises:
        ValueError: If required configuration is missing or invalid.
    """
    return _settings_cache.get()


def reload_settings() -> Settings:
    """Re-read the dotenv chain and environment and replace the cached settings."""
    return _settings_cache.reload()


def clear_settings_cache() -> None:
    """Forget the cached settings; the next ``get_settings()`` builds new ones."""
    _settings_cache.clear()
