"""
Configuration via pydantic and pydantic-settings.

Two layers:
- Settings: process settings loaded from RESPONSE_CACHE_* environment
  variables (or a .env file in dev). Used by the app factory.
- ResponseCacheConfig: per-instance options of a ResponseCache. Caller
  overrides are merged onto the defaults once, at construction time.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import StrEnum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from response_cache.errors import ConfigurationError

# Browser cache-validation headers vary per client and per visit; keeping
# them in the key would make every lookup a miss.
DEFAULT_EXCLUDED_HEADERS: tuple[str, ...] = (
    "etag",
    "if-match",
    "if-none-match",
    "if-modified-since",
    "if-unmodified-since",
)

DEFAULT_EXPIRE_MS = 1000 * 60 * 5


def _ignore_miss(request: Any, response: Any) -> None:
    return None


def _ignore_hit(request: Any, response: Any, cached_data: Any) -> None:
    return None


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class ResponseCacheConfig(BaseModel):
    """Options for a single ResponseCache instance.

    Accepts snake_case names as well as their camelCase spelling
    (``ignoreHeaders``, ``onCacheHit`` ...). Attributes stay assignable so
    tests can toggle the key flags between calls.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )

    expire: int = Field(
        default=DEFAULT_EXPIRE_MS,
        ge=0,
        description="Time to live of a stored response, in milliseconds",
    )
    ignore_headers: bool = False
    ignore_method: bool = False
    ignore_query: bool = False
    excluded_headers: tuple[str, ...] = Field(
        default=DEFAULT_EXCLUDED_HEADERS,
        description="Request headers never included in the cache key",
    )
    on_cache_hit: Callable[..., Any] = _ignore_hit
    on_cache_miss: Callable[..., Any] = _ignore_miss

    @field_validator("excluded_headers", mode="before")
    @classmethod
    def _lowercase_headers(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            value = [value]
        return tuple(str(name).lower() for name in value)

    @classmethod
    def from_overrides(
        cls, overrides: ResponseCacheConfig | Mapping[str, Any] | None
    ) -> ResponseCacheConfig:
        """Merge caller overrides onto the defaults.

        Raises:
            ConfigurationError: overrides are not a mapping or fail validation.
        """
        if overrides is None:
            return cls()
        if isinstance(overrides, ResponseCacheConfig):
            return overrides.model_copy()
        if not isinstance(overrides, Mapping):
            raise ConfigurationError(
                f"config must be a mapping or ResponseCacheConfig, got {type(overrides).__name__}"
            )
        try:
            return cls.model_validate(dict(overrides))
        except ValidationError as exc:
            raise ConfigurationError(f"invalid response cache config: {exc}") from exc


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RESPONSE_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = Field(
        default="",
        description="Minimum log level. Empty picks DEBUG in debug mode, INFO otherwise.",
    )
    json_logs: bool | None = Field(
        default=None,
        description="Render logs as JSON. Unset means JSON in production only.",
    )

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #
    namespace: str = Field(
        default="responses",
        min_length=1,
        description="Namespace (Redis hash) holding the cached responses",
    )
    redis_url: str = Field(
        default="",
        description="Redis connection URL. Empty selects the in-memory cache.",
    )
    expire_ms: int = Field(
        default=DEFAULT_EXPIRE_MS,
        ge=0,
        description="Time to live of a stored response, in milliseconds",
    )
    ignore_headers: bool = False
    ignore_method: bool = False
    ignore_query: bool = False
    excluded_headers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_HEADERS),
        description="Request headers never included in the cache key (JSON list in the environment)",
    )
    cache_paths: list[str] = Field(
        default_factory=list,
        description="Path prefixes handled by the cache middleware. Empty means every path.",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.debug else "INFO"

    @property
    def effective_json_logs(self) -> bool:
        return self.is_prod if self.json_logs is None else self.json_logs

    def cache_config(self) -> ResponseCacheConfig:
        return ResponseCacheConfig(
            expire=self.expire_ms,
            ignore_headers=self.ignore_headers,
            ignore_method=self.ignore_method,
            ignore_query=self.ignore_query,
            excluded_headers=self.excluded_headers,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
