"""
Service configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or a .env file;
no hardcoded URLs or credentials.

CHANGELOG:
- 2026-10-17: Read CORS origins through CorsSettings so .env applies
- 2026-10-17: Add AUTO_REGISTER_DEVICES / AUTO_REGISTER_ORGANIZATION policy flags
- 2026-10-17: Initial creation

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings

_ASYNC_DRIVERS = ("postgresql+asyncpg://", "sqlite+aiosqlite://")


def split_origins(raw: str) -> list[str]:
    """Split a comma separated origin list, skipping empty entries."""
    return [o.strip() for o in raw.split(",") if o.strip()]


class CorsSettings(BaseSettings):
    """Dashboard origins allowed by CORS.

    The CORS middleware is installed when the application module is imported,
    before the lifespan loads ServiceSettings, so these are read on their own.
    Other keys in the environment or ``.env`` are ignored here.

    Attributes:
        cors_origins: Comma separated dashboard origins allowed by CORS.
    """

    cors_origins: str = ""

    @property
    def cors_origin_list(self) -> list[str]:
        """Return CORS origins as a list, skipping empty entries."""
        return split_origins(self.cors_origins)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


class ServiceSettings(CorsSettings):
    """Configuration for the telemetry service.

    Attributes:
        database_url: SQLAlchemy async database URL.
        redis_url: Redis URL for the latest-value cache. The cache is
            disabled when unset.
        api_tokens: ``token:organization_id:role`` entries, comma separated.
        auto_register_devices: Create unknown devices on first ingestion
            instead of rejecting them.
        auto_register_organization: Organization name that receives
            auto-registered devices.
        auto_create_schema: Create tables at startup (dev/test only).
        max_readings_per_request: Max readings accepted in one batch.
        max_request_bytes: Max ingestion request body size.
        default_query_limit: Row limit for range queries without a limit.
        max_query_limit: Largest explicit limit a range query may request.
        cache_ttl_s: TTL of cached latest-value rows.
        bus_queue_size: Per-subscriber buffer of the live distribution bus.
        cors_origins: Inherited from CorsSettings.
        log_level: Root logger level.
        host: Bind address used by ``python -m solarmon``.
        port: Listen port used by ``python -m solarmon``.
    """

    database_url: str
    redis_url: str | None = None
    api_tokens: str
    auto_register_devices: bool = False
    auto_register_organization: str = "Unassigned"
    auto_create_schema: bool = False
    max_readings_per_request: int = 1000
    max_request_bytes: int = 1_048_576
    default_query_limit: int = 1000
    max_query_limit: int = 10_000
    cache_ttl_s: int = 5
    bus_queue_size: int = 256
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 5000

    @field_validator("database_url")
    @classmethod
    def database_url_must_be_async(cls, v: str) -> str:
        """Validate that the database URL names an async driver."""
        if not v.startswith(_ASYNC_DRIVERS):
            raise ValueError(
                "DATABASE_URL must use an async driver "
                f"({', '.join(_ASYNC_DRIVERS)})"
            )
        return v

    @field_validator(
        "max_readings_per_request",
        "max_request_bytes",
        "default_query_limit",
        "max_query_limit",
        "bus_queue_size",
    )
    @classmethod
    def limits_must_be_positive(cls, v: int) -> int:
        """Validate that size limits are >= 1."""
        if v < 1:
            raise ValueError("limit values must be >= 1")
        return v

    @field_validator("cache_ttl_s")
    @classmethod
    def cache_ttl_must_be_non_negative(cls, v: int) -> int:
        """Validate cache TTL is non-negative (0 disables expiry-based reuse)."""
        if v < 0:
            raise ValueError("CACHE_TTL_S must be >= 0")
        return v

    @field_validator("auto_register_organization")
    @classmethod
    def auto_register_organization_not_blank(cls, v: str) -> str:
        """Validate the auto-register organization name is not blank."""
        if not v.strip():
            raise ValueError("AUTO_REGISTER_ORGANIZATION must not be blank")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL '{v}'")
        return level

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "forbid"}
