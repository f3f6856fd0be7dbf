from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokengate.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SCOPES = ("read:a", "read:b", "write:a", "write:b")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class Settings(BaseModel):
    """Runtime settings for the token service.

    Every field names the environment variable it is read from; see
    ``Settings.from_env``.
    """

    database_url: str = env_field(
        "postgresql://localhost:5432/tokengate", "POSTGRESQL_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    run_migrations: bool = env_field(
        False,
        "RUN_MIGRATIONS",
        description="Apply tokengate/storage/schema.sql on startup",
    )
    api_env: str = env_field("development", "API_ENV")
    test_mode: bool = env_field(False, "TEST_MODE")
    store_timeout_seconds: float = env_field(
        3.0,
        "STORE_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound for every store round-trip",
    )
    valid_scopes: list[str] = env_field(
        list(DEFAULT_SCOPES),
        "VALID_SCOPES",
        description="Closed vocabulary of capabilities",
    )
    default_user_scope: list[str] | None = env_field(
        None,
        "DEFAULT_USER_SCOPE",
        description="Scope granted to new users; defaults to the full vocabulary",
    )
    token_base_ttl_minutes: int = env_field(120, "TOKEN_BASE_TTL_MINUTES", gt=0)
    token_min_extension_minutes: int = env_field(-55, "TOKEN_MIN_EXTENSION_MINUTES")
    token_max_extension_minutes: int = env_field(1380, "TOKEN_MAX_EXTENSION_MINUTES")
    password_time_cost: int = env_field(3, "PASSWORD_TIME_COST", ge=1)
    password_memory_cost: int = env_field(65536, "PASSWORD_MEMORY_COST", ge=8)
    password_parallelism: int = env_field(4, "PASSWORD_PARALLELISM", ge=1)
    insufficient_scope_status: int = env_field(
        401,
        "INSUFFICIENT_SCOPE_STATUS",
        description="401 (default) or 403 for routes whose scope is not held",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        app_env = os.getenv("APP_ENV")
        env_file_values: dict[str, Any] = {}
        if app_env and os.path.exists(f".env.{app_env}"):
            env_file_values = dotenv_values(f".env.{app_env}")
        else:
            if app_env:
                logger.warning("env_file_missing", app_env=app_env, fallback=".env")
            env_file_values = dotenv_values(".env")
        merged: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("valid_scopes", "default_user_scope", "cors_allow_origins", mode="before")
    @classmethod
    def _parse_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("insufficient_scope_status")
    @classmethod
    def _validate_scope_status(cls, value: int) -> int:
        if value not in (401, 403):
            raise ValueError("INSUFFICIENT_SCOPE_STATUS must be 401 or 403")
        return value

    @model_validator(mode="after")
    def _check_scope_and_ttl_bounds(self) -> "Settings":
        if not self.valid_scopes:
            raise ValueError("VALID_SCOPES must list at least one capability")
        if self.default_user_scope:
            unknown = [s for s in self.default_user_scope if s not in self.valid_scopes]
            if unknown:
                raise ValueError(f"DEFAULT_USER_SCOPE contains unknown scope '{unknown[0]}'")
        if self.token_min_extension_minutes > self.token_max_extension_minutes:
            raise ValueError("token extension bounds are inverted")
        if self.token_base_ttl_minutes + self.token_min_extension_minutes <= 0:
            raise ValueError("minimum token lifetime must be positive")
        return self

    def user_scope_default(self) -> list[str]:
        return list(self.default_user_scope or self.valid_scopes)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
