"""Centralized configuration via pydantic-settings.

Realtime thresholds, paging defaults, and data store endpoints live here.
Override any value via environment variable (e.g., ``REALTIME_DEBOUNCE_MS=500``).
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Data store ---
    DATA_STORE: str = "memory"  # "memory" (local dev, tests) or "postgrest" (hosted)
    POSTGREST_URL: str = ""  # e.g. https://<project>.example.co/rest/v1
    POSTGREST_API_KEY: SecretStr = SecretStr("")
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- Realtime ---
    REALTIME_DEBOUNCE_MS: int = 300
    REALTIME_BATCH_SIZE: int = 10
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 5
    REALTIME_RECONNECT_BASE_MS: int = 1000
    REALTIME_RECONNECT_MAX_MS: int = 30000

    # --- CRUD ---
    CRUD_PAGE_SIZE: int = 10
    CRUD_SEARCH_FIELDS: list[str] = ["name", "title", "description"]

    # --- Audit ---
    AUDIT_COLLECTION: str = "admin_activity_logs"
    AUDIT_ACTOR_CACHE_TTL: int = 300  # seconds

    # --- Observability ---
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    VERSION: str = "0.1.0"

    model_config = {"env_prefix": "", "case_sensitive": True}

    @model_validator(mode="after")
    def validate_backoff(self) -> "Settings":
        """Validate reconnect backoff bounds are consistent."""
        if self.REALTIME_RECONNECT_BASE_MS <= 0:
            raise ValueError("REALTIME_RECONNECT_BASE_MS must be positive")
        if self.REALTIME_RECONNECT_BASE_MS > self.REALTIME_RECONNECT_MAX_MS:
            raise ValueError(
                f"REALTIME_RECONNECT_BASE_MS ({self.REALTIME_RECONNECT_BASE_MS}) must not exceed "
                f"REALTIME_RECONNECT_MAX_MS ({self.REALTIME_RECONNECT_MAX_MS})"
            )
        return self

    @model_validator(mode="after")
    def validate_sizes(self) -> "Settings":
        """Batch and page sizes must be at least one."""
        if self.REALTIME_BATCH_SIZE < 1:
            raise ValueError("REALTIME_BATCH_SIZE must be >= 1")
        if self.CRUD_PAGE_SIZE < 1:
            raise ValueError("CRUD_PAGE_SIZE must be >= 1")
        if self.REALTIME_DEBOUNCE_MS < 0:
            raise ValueError("REALTIME_DEBOUNCE_MS must be >= 0")
        return self

    @model_validator(mode="after")
    def validate_postgrest(self) -> "Settings":
        """Warn if the hosted store is selected without an endpoint."""
        if self.DATA_STORE == "postgrest" and not self.POSTGREST_URL:
            import warnings

            warnings.warn(
                "DATA_STORE=postgrest but POSTGREST_URL is empty. "
                "Set POSTGREST_URL or the context will fall back to the in-memory store.",
                UserWarning,
                stacklevel=2,
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
