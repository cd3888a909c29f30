#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the whole
inference gateway. Every tunable (rate limits, breaker thresholds, cache TTLs,
provider credentials, timeouts and feature flags) is read once into an
immutable snapshot.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Production-required values enforced before the process serves traffic
- Easy testing with override mechanisms
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inference_gateway.core.config.constants import (
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    LLMProvider,
    StateBackend,
)


class _SettingsGroup(BaseModel):
    """Read-only view over a slice of the flat settings."""

    model_config = ConfigDict(frozen=True)


class ApplicationSettings(_SettingsGroup):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: str
    DEBUG: bool
    APP_NAME: str
    APP_VERSION: str
    API_HOST: str
    API_PORT: int
    API_BASE_PATH: str
    CORS_ORIGINS: list[str]


class SecuritySettings(_SettingsGroup):
    """JWT and per-platform app secrets consumed by the upstream authenticator."""

    JWT_SECRET: str | None
    JWT_ISSUER: str
    APP_SECRET_IOS_V1: str | None
    APP_SECRET_ANDROID_V1: str | None

    @property
    def app_secrets(self) -> dict[str, str]:
        """Configured platform secrets keyed by platform/version."""
        secrets = {"ios_v1": self.APP_SECRET_IOS_V1, "android_v1": self.APP_SECRET_ANDROID_V1}
        return {name: value for name, value in secrets.items() if value}


class GeminiSettings(_SettingsGroup):
    """
    Primary provider configuration.

    STAGE-0.2: Primary provider configuration
    """

    API_KEYS: tuple[str, ...]
    MODEL: str
    BASE_URL: str
    TEMPERATURE: float
    TOP_P: float | None
    TOP_K: int | None
    MAX_OUTPUT_TOKENS: int
    RESPONSE_MIME_TYPE: str


class OpenAISettings(_SettingsGroup):
    """Fallback provider configuration, including the daily spend ceiling."""

    API_KEY: str | None
    MODEL: str
    BASE_URL: str
    MAX_TOKENS: int
    TEMPERATURE: float
    MAX_COST_PER_DAY: float
    INPUT_COST_PER_1K: float
    OUTPUT_COST_PER_1K: float


class RateLimitSettings(_SettingsGroup):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting thresholds

    Fixed windows aligned to the epoch (UTC day for daily quotas).
    """

    FREE_DAILY: int
    FREE_PER_MINUTE: int
    PREMIUM_DAILY: int
    PREMIUM_PER_MINUTE: int
    GLOBAL_RPM: int
    IP_PER_HOUR: int


class CircuitBreakerSettings(_SettingsGroup):
    """
    Circuit breaker thresholds for a single provider.

    STAGE-CB: Circuit breaker thresholds
    """

    FAILURE_THRESHOLD: int
    SUCCESS_THRESHOLD: int
    TIMEOUT_SECONDS: int
    HALF_OPEN_REQUESTS: int


class CacheSettings(_SettingsGroup):
    """
    Result and idempotency cache lifetimes.

    STAGE-2: Cache TTL configuration
    """

    RESULT_TTL_SECONDS: int
    IDEMPOTENCY_TTL_SECONDS: int
    MEMORY_SWEEP_INTERVAL: int


class LimitSettings(_SettingsGroup):
    """Request, image and timeout ceilings."""

    MAX_IMAGE_SIZE_BYTES: int
    MAX_REQUEST_SIZE_BYTES: int
    MAX_PROMPT_LENGTH: int
    REQUEST_TIMEOUT_SECONDS: float
    KEY_COOLDOWN_SECONDS: int
    KEY_RPM_LIMIT: int


class FeatureSettings(_SettingsGroup):
    """Feature flags."""

    ENABLE_OPENAI_FALLBACK: bool
    ENABLE_IMAGE_CACHING: bool


class RedisSettings(_SettingsGroup):
    """
    Redis configuration for shared gateway state.

    STAGE-0.1: Redis connection configuration
    """

    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_DB: int
    REDIS_PASSWORD: str | None
    REDIS_MAX_CONNECTIONS: int
    REDIS_SOCKET_TIMEOUT: int
    REDIS_SOCKET_CONNECT_TIMEOUT: int
    REDIS_HEALTH_CHECK_INTERVAL: int


class LoggingSettings(_SettingsGroup):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str
    LOG_FORMAT: Literal["json", "console"]


class Settings(BaseSettings):
    """
    Main settings class holding the whole configuration surface.

    STAGE-0: Centralized configuration initialization

    Usage:
        from inference_gateway.core.config.settings import get_settings

        settings = get_settings()
        daily_quota = settings.rate_limit.FREE_DAILY
        gemini_keys = settings.gemini.API_KEYS

    The snapshot is frozen: components receive it once at construction and
    never observe a partially updated configuration.
    """

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Inference Gateway", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=3000, description="API port")
    API_BASE_PATH: str = Field(default="/api/v1", description="Route prefix")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # Security settings
    JWT_SECRET: str | None = Field(default=None, description="JWT signing secret")
    JWT_ISSUER: str = Field(default="reefscan-api", description="JWT issuer")
    APP_SECRET_IOS_V1: str | None = Field(default=None, description="iOS v1 install secret")
    APP_SECRET_ANDROID_V1: str | None = Field(default=None, description="Android v1 install secret")

    # Primary provider
    GEMINI_KEY_1: str | None = Field(default=None, description="Primary provider key 1")
    GEMINI_KEY_2: str | None = Field(default=None, description="Primary provider key 2")
    GEMINI_KEY_3: str | None = Field(default=None, description="Primary provider key 3")
    GEMINI_MODEL: str = Field(default="gemini-2.0-flash", description="Primary model")
    GEMINI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Primary provider base URL",
    )
    GEMINI_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=2.0)
    GEMINI_TOP_P: float | None = Field(default=0.95, ge=0.0, le=1.0)
    GEMINI_TOP_K: int | None = Field(default=40, ge=1)
    GEMINI_MAX_OUTPUT_TOKENS: int = Field(default=2048, ge=1)
    GEMINI_RESPONSE_MIME_TYPE: str = Field(default="application/json")

    # Fallback provider
    OPENAI_API_KEY: str | None = Field(default=None, description="Fallback provider key")
    OPENAI_MODEL: str = Field(default="gpt-4o", description="Fallback model")
    OPENAI_BASE_URL: str = Field(default="https://api.openai.com/v1", description="Fallback base URL")
    OPENAI_MAX_TOKENS: int = Field(default=2048, ge=1)
    OPENAI_TEMPERATURE: float = Field(default=0.2, ge=0.0, le=2.0)
    OPENAI_MAX_COST_PER_DAY: float = Field(default=100.0, ge=0.0, description="Daily USD ceiling")
    OPENAI_INPUT_COST_PER_1K: float = Field(default=0.005, ge=0.0)
    OPENAI_OUTPUT_COST_PER_1K: float = Field(default=0.015, ge=0.0)

    # Rate limiting
    RATE_LIMIT_FREE_DAILY: int = Field(default=3, ge=0)
    RATE_LIMIT_FREE_PER_MINUTE: int = Field(default=5, ge=0)
    RATE_LIMIT_PREMIUM_DAILY: int = Field(default=20, ge=0)
    RATE_LIMIT_PREMIUM_PER_MINUTE: int = Field(default=5, ge=0)
    RATE_LIMIT_GLOBAL_RPM: int = Field(default=500, ge=0)
    RATE_LIMIT_IP_PER_HOUR: int = Field(default=100, ge=0)

    # Circuit breakers
    CB_GEMINI_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CB_GEMINI_SUCCESS_THRESHOLD: int = Field(default=3, ge=1)
    CB_GEMINI_TIMEOUT_SECONDS: int = Field(default=30, ge=1)
    CB_GEMINI_HALF_OPEN_REQUESTS: int = Field(default=3, ge=1)
    CB_OPENAI_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    CB_OPENAI_SUCCESS_THRESHOLD: int = Field(default=3, ge=1)
    CB_OPENAI_TIMEOUT_SECONDS: int = Field(default=60, ge=1)
    CB_OPENAI_HALF_OPEN_REQUESTS: int = Field(default=3, ge=1)

    # Key rotation
    KEY_COOLDOWN_SECONDS: int = Field(default=60, ge=1, description="Cooldown after quota/auth errors")
    KEY_RPM_LIMIT: int = Field(default=60, ge=0, description="Per-key requests per minute, 0 disables")

    # Caching
    CACHE_IMAGE_TTL_DAYS: int = Field(default=7, ge=1)
    CACHE_IDEMPOTENCY_TTL_HOURS: int = Field(default=24, ge=1)
    CACHE_MEMORY_SWEEP_INTERVAL: int = Field(default=1000, ge=1, description="Writes between sweeps")

    # Limits
    MAX_IMAGE_SIZE_MB: float = Field(default=5, gt=0)
    MAX_REQUEST_SIZE_MB: float = Field(default=10, gt=0)
    MAX_PROMPT_LENGTH: int = Field(default=8000, ge=1)
    REQUEST_TIMEOUT_MS: int = Field(default=30000, ge=1)

    # Feature flags
    ENABLE_OPENAI_FALLBACK: bool = Field(default=True)
    ENABLE_IMAGE_CACHING: bool = Field(default=True)

    # State backend
    STATE_BACKEND: StateBackend = Field(default=StateBackend.MEMORY)
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_production_requirements(self):
        """
        Refuse to start a production process with missing secrets.

        All problems are reported together so an operator can fix the
        environment in one pass.
        """
        if self.ENVIRONMENT != "production":
            return self

        errors = []
        if not self.JWT_SECRET or len(self.JWT_SECRET) < 32:
            errors.append("JWT_SECRET must be at least 32 characters in production")
        if not self.gemini_keys:
            errors.append("At least one GEMINI_KEY is required")
        if not (self.APP_SECRET_IOS_V1 or self.APP_SECRET_ANDROID_V1):
            errors.append("At least one APP_SECRET is required")

        if errors:
            raise ValueError("; ".join(errors))
        return self

    @property
    def gemini_keys(self) -> tuple[str, ...]:
        """Configured primary keys in slot order, blanks skipped."""
        keys = (self.GEMINI_KEY_1, self.GEMINI_KEY_2, self.GEMINI_KEY_3)
        return tuple(key for key in keys if key)

    # Nested configuration views
    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            DEBUG=self.DEBUG,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            API_BASE_PATH=self.API_BASE_PATH,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    @property
    def security(self) -> SecuritySettings:
        """Get security settings."""
        return SecuritySettings(
            JWT_SECRET=self.JWT_SECRET,
            JWT_ISSUER=self.JWT_ISSUER,
            APP_SECRET_IOS_V1=self.APP_SECRET_IOS_V1,
            APP_SECRET_ANDROID_V1=self.APP_SECRET_ANDROID_V1,
        )

    @property
    def gemini(self) -> GeminiSettings:
        """Get primary provider settings."""
        return GeminiSettings(
            API_KEYS=self.gemini_keys,
            MODEL=self.GEMINI_MODEL,
            BASE_URL=self.GEMINI_BASE_URL,
            TEMPERATURE=self.GEMINI_TEMPERATURE,
            TOP_P=self.GEMINI_TOP_P,
            TOP_K=self.GEMINI_TOP_K,
            MAX_OUTPUT_TOKENS=self.GEMINI_MAX_OUTPUT_TOKENS,
            RESPONSE_MIME_TYPE=self.GEMINI_RESPONSE_MIME_TYPE,
        )

    @property
    def openai(self) -> OpenAISettings:
        """Get fallback provider settings."""
        return OpenAISettings(
            API_KEY=self.OPENAI_API_KEY,
            MODEL=self.OPENAI_MODEL,
            BASE_URL=self.OPENAI_BASE_URL,
            MAX_TOKENS=self.OPENAI_MAX_TOKENS,
            TEMPERATURE=self.OPENAI_TEMPERATURE,
            MAX_COST_PER_DAY=self.OPENAI_MAX_COST_PER_DAY,
            INPUT_COST_PER_1K=self.OPENAI_INPUT_COST_PER_1K,
            OUTPUT_COST_PER_1K=self.OPENAI_OUTPUT_COST_PER_1K,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            FREE_DAILY=self.RATE_LIMIT_FREE_DAILY,
            FREE_PER_MINUTE=self.RATE_LIMIT_FREE_PER_MINUTE,
            PREMIUM_DAILY=self.RATE_LIMIT_PREMIUM_DAILY,
            PREMIUM_PER_MINUTE=self.RATE_LIMIT_PREMIUM_PER_MINUTE,
            GLOBAL_RPM=self.RATE_LIMIT_GLOBAL_RPM,
            IP_PER_HOUR=self.RATE_LIMIT_IP_PER_HOUR,
        )

    def circuit_breaker(self, provider: LLMProvider | str) -> CircuitBreakerSettings:
        """Get circuit breaker thresholds for one provider."""
        prefix = f"CB_{LLMProvider(provider).value.upper()}"
        return CircuitBreakerSettings(
            FAILURE_THRESHOLD=getattr(self, f"{prefix}_FAILURE_THRESHOLD"),
            SUCCESS_THRESHOLD=getattr(self, f"{prefix}_SUCCESS_THRESHOLD"),
            TIMEOUT_SECONDS=getattr(self, f"{prefix}_TIMEOUT_SECONDS"),
            HALF_OPEN_REQUESTS=getattr(self, f"{prefix}_HALF_OPEN_REQUESTS"),
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            RESULT_TTL_SECONDS=self.CACHE_IMAGE_TTL_DAYS * SECONDS_PER_DAY,
            IDEMPOTENCY_TTL_SECONDS=self.CACHE_IDEMPOTENCY_TTL_HOURS * SECONDS_PER_HOUR,
            MEMORY_SWEEP_INTERVAL=self.CACHE_MEMORY_SWEEP_INTERVAL,
        )

    @property
    def limits(self) -> LimitSettings:
        """Get request ceilings."""
        return LimitSettings(
            MAX_IMAGE_SIZE_BYTES=int(self.MAX_IMAGE_SIZE_MB * 1024 * 1024),
            MAX_REQUEST_SIZE_BYTES=int(self.MAX_REQUEST_SIZE_MB * 1024 * 1024),
            MAX_PROMPT_LENGTH=self.MAX_PROMPT_LENGTH,
            REQUEST_TIMEOUT_SECONDS=self.REQUEST_TIMEOUT_MS / 1000,
            KEY_COOLDOWN_SECONDS=self.KEY_COOLDOWN_SECONDS,
            KEY_RPM_LIMIT=self.KEY_RPM_LIMIT,
        )

    @property
    def features(self) -> FeatureSettings:
        """Get feature flags."""
        return FeatureSettings(
            ENABLE_OPENAI_FALLBACK=self.ENABLE_OPENAI_FALLBACK,
            ENABLE_IMAGE_CACHING=self.ENABLE_IMAGE_CACHING,
        )

    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        frozen=True,
        extra="ignore",  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance

    Raises:
        pydantic.ValidationError: If the environment is invalid, including
            missing production secrets
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
