"""Configuration management using pydantic-settings.

Loads from environment variables and .env file. The resulting snapshot is
frozen: it is created once at startup and passed by reference to the
components that need it.
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

ImageFormat = Literal["jpeg", "webp", "png"]

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Attributes:
        base_url: Base URL of the Tableau Public API.
        api_timeout: Deadline for every outbound call in seconds.
        user_agent: User-Agent header sent with API requests.
        cache_enabled: Disable to send every request straight upstream.
        cache_max_entries: Maximum number of cached responses.
        cache_default_ttl: Lifetime of a cached response in seconds.
        max_concurrency: Maximum number of concurrent outbound calls.
        batch_delay_ms: Coalescing window before an outbound call, in milliseconds.
        image_max_width: Default bounding box width for processed images.
        image_max_height: Default bounding box height for processed images.
        image_quality: Default JPEG/WebP quality (1-100).
        image_format: Default output format (jpeg, webp, png).
        image_token_limit: Token ceiling imposed by the MCP client.
        host: Server bind address (http transport).
        port: Server bind port (http transport).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_json: Output logs in JSON format for production.

    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Upstream API
    base_url: str = "https://public.tableau.com"
    api_timeout: float = Field(default=30.0, gt=0)
    user_agent: str = "tableau-public-mcp/0.1.0"

    # Response cache
    cache_enabled: bool = True
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_default_ttl: float = Field(default=300.0, gt=0)  # 5 minutes

    # Outbound call coordination
    max_concurrency: int = Field(default=5, ge=1)
    batch_delay_ms: int = Field(default=10, ge=0)

    # Image optimization
    image_max_width: int = Field(default=800, ge=1)
    image_max_height: int = Field(default=600, ge=1)
    image_quality: int = Field(default=80, ge=1, le=100)
    image_format: ImageFormat = "jpeg"
    image_token_limit: int = Field(default=25000, ge=1)  # MCP response ceiling

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def batch_delay(self) -> float:
        """Return the coalescing window in seconds.

        Returns:
            float: ``batch_delay_ms`` converted to seconds.

        """
        return self.batch_delay_ms / 1000


def load_settings(**overrides) -> Settings:
    """Create the settings snapshot for this process.

    Args:
        **overrides: Explicit values that take precedence over the environment.

    Returns:
        The frozen Settings instance.

    Raises:
        ConfigError: If any tunable is missing or out of range.

    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
