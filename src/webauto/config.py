"""
Configuration models for webauto.

Provides Pydantic-validated configuration for the browser backend, the
session pool, the extraction engine and the HTTP server. Values come from
defaults, an optional YAML file and WEBAUTO_ environment variables.
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Any, Self

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from webauto.extraction.selectors import DEFAULT_GENERIC_LADDER, DEFAULT_KEYWORD_ALTERNATIVES
from webauto.extraction.validation import DEFAULT_MEANINGFUL_PATTERNS

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
    "--no-default-browser-check",
)


class Viewport(BaseModel):
    """Page viewport dimensions."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1920, ge=100, le=7680)
    height: int = Field(default=1080, ge=100, le=4320)


class BrowserConfig(BaseModel):
    """Configuration for the shared browser backend."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    headless: bool = True
    timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=300000,
        description="Default timeout for backend calls and page navigation",
    )
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Viewport = Field(default_factory=Viewport)
    executable_path: str | None = Field(
        default=None,
        description="Use a system browser instead of the bundled one",
    )
    launch_args: tuple[str, ...] = DEFAULT_LAUNCH_ARGS
    ignore_https_errors: bool = True


class PoolConfig(BaseModel):
    """Configuration for the client session pool."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_sessions: int = Field(default=2, ge=1, le=100)
    enforce_capacity: bool = Field(
        default=True,
        description="Reject new client ids once max_sessions is reached",
    )
    probe_timeout_ms: int = Field(default=5000, ge=100, le=60000)
    close_timeout_ms: int = Field(default=5000, ge=100, le=60000)


class FallbackPolicyConfig(BaseModel):
    """Keyword driven fallback selector heuristics."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    keyword_alternatives: dict[str, tuple[str, ...]] = Field(
        default_factory=lambda: dict(DEFAULT_KEYWORD_ALTERNATIVES),
    )
    generic_ladder: tuple[str, ...] = DEFAULT_GENERIC_LADDER


class ExtractionConfig(BaseModel):
    """Defaults and limits for the content extraction engine."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_timeout_ms: int = Field(default=30000, ge=100, le=60000)
    max_timeout_ms: int = Field(default=60000, ge=1000, le=300000)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    max_retry_attempts: int = Field(default=10, ge=1, le=50)
    wait_for_content: bool = True
    dynamic_wait_cap_ms: int = Field(default=5000, ge=0, le=60000)
    settle_delay_ms: int = Field(default=1000, ge=0, le=10000)
    loading_indicator_timeout_ms: int = Field(default=3000, ge=0, le=30000)
    loading_indicators: tuple[str, ...] = (
        ".loading",
        ".spinner",
        ".skeleton",
        '[aria-busy="true"]',
    )
    backoff_base_ms: int = Field(default=500, ge=0, le=10000)
    max_selector_length: int = Field(default=1000, ge=1, le=100000)
    meaningful_patterns: tuple[str, ...] = DEFAULT_MEANINGFUL_PATTERNS
    fallback_policy: FallbackPolicyConfig = Field(default_factory=FallbackPolicyConfig)

    @model_validator(mode="after")
    def validate_limits(self) -> Self:
        """Ensure defaults sit inside their caps."""
        if self.default_timeout_ms > self.max_timeout_ms:
            raise ValueError("default_timeout_ms cannot exceed max_timeout_ms")
        if self.retry_attempts > self.max_retry_attempts:
            raise ValueError("retry_attempts cannot exceed max_retry_attempts")
        return self


class ActionConfig(BaseModel):
    """Defaults for navigate, click, input and screenshot operations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    click_settle_ms: int = Field(
        default=100,
        ge=0,
        le=10000,
        description="Pause between scrolling an element into view and clicking it",
    )
    type_delay_ms: int = Field(default=50, ge=0, le=1000)
    screenshot_quality: int = Field(default=80, ge=0, le=100)


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(default=29527, ge=1, le=65535)
    cors_origins: tuple[str, ...] = ("*",)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject empty hosts."""
        v = v.strip()
        if not v:
            raise ValueError("host must not be empty")
        return v


class WebAutoConfig(BaseModel):
    """Complete webauto configuration."""

    model_config = ConfigDict(extra="forbid")

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    actions: ActionConfig = Field(default_factory=ActionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


class WebAutoSettings(BaseSettings):
    """
    Environment-based settings.

    Loads configuration from environment variables with WEBAUTO_ prefix,
    e.g. WEBAUTO_POOL__MAX_SESSIONS=4 or WEBAUTO_BROWSER__HEADLESS=false.
    """

    model_config = SettingsConfigDict(
        env_prefix="WEBAUTO_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    browser: dict[str, Any] = Field(default_factory=dict)
    pool: dict[str, Any] = Field(default_factory=dict)
    extraction: dict[str, Any] = Field(default_factory=dict)
    actions: dict[str, Any] = Field(default_factory=dict)
    server: dict[str, Any] = Field(default_factory=dict)

    # Config file path
    config_file: Path | None = None

    @cached_property
    def config(self) -> WebAutoConfig:
        """Build complete WebAutoConfig from the optional file and environment."""
        file_config: dict[str, Any] = {}
        if self.config_file and self.config_file.exists():
            file_config = _read_yaml(self.config_file)

        merged: dict[str, Any] = {}
        for section in ("browser", "pool", "extraction", "actions", "server"):
            merged[section] = {
                **(file_config.get(section) or {}),
                **getattr(self, section),
            }
        return WebAutoConfig(**merged)


STANDARD_CONFIG_PATHS = (
    Path(".webauto/config.yaml"),
    Path(".webauto/config.yml"),
    Path("webauto.yaml"),
    Path("webauto.yml"),
)


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_config(config_file: Path | str | None = None) -> WebAutoConfig:
    """
    Load configuration from file and environment.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (explicit path, else the first standard location found)
    3. Defaults

    Args:
        config_file: Optional path to YAML config file

    Returns:
        Complete WebAutoConfig instance
    """
    path: Path | None = Path(config_file) if config_file else None
    if path is None:
        path = next((p for p in STANDARD_CONFIG_PATHS if p.exists()), None)
    elif not path.exists():
        logger.warning("Config file not found, using defaults", path=str(path))

    settings = WebAutoSettings(config_file=path) if path else WebAutoSettings()
    config = settings.config

    logger.info(
        "Loaded webauto config",
        config_file=str(path) if path else None,
        max_sessions=config.pool.max_sessions,
        headless=config.browser.headless,
        timeout_ms=config.browser.timeout_ms,
    )
    return config
