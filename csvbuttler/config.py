"""
Configuration module for csvbuttler.

Contains the layered settings model and all security constants.

SETTINGS PRECEDENCE (highest first):
1. CLI overrides passed to load_settings()
2. Environment variables, prefix APP_, nested with "__" (APP_SECRETS__JWT)
3. .env file (loaded into the environment with python-dotenv)
4. config/local.toml        (not checked in)
5. config/{APP_ENV}.toml    (APP_ENV defaults to "dev")
6. config/default.toml

The resulting Settings value is frozen. It is built once at startup and
shared by reference with every request.
"""

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from .errors import ConfigurationError

VERSION: str = "0.3.0"

# =============================================================================
# SECURITY CONSTANTS
# =============================================================================

# Name of the identity cookie carrying the (signed) session token
IDENTITY_COOKIE: str = "jwt_token"

# Header carrying the CSRF token, both on login responses and protected requests
CSRF_HEADER: str = "X-CSRF-TOKEN"

# Session tokens expire after a fixed 24 hours
SESSION_TOKEN_TTL: timedelta = timedelta(hours=24)

# Identity cookie lifetime (browser side and signature age)
IDENTITY_COOKIE_MAX_AGE: timedelta = timedelta(days=1)

CSRF_TOKEN_TTL: timedelta = timedelta(hours=1)

JWT_ALGORITHM: str = "HS256"

# Login is a stub: every user belongs to the same company
DEMO_COMPANY: str = "Foo Inc."

# =============================================================================
# HTTP CONSTANTS
# =============================================================================

PRODUCTS_CACHE_CONTROL: str = "max-age=3600"
CORS_MAX_AGE: int = 3600

# Bodies smaller than this are sent uncompressed
GZIP_MINIMUM_SIZE: int = 500

# =============================================================================
# CONFIG FILES
# =============================================================================

DEFAULT_CONFIG_DIR: str = "config"
DEFAULT_APP_ENV: str = "dev"


# =============================================================================
# SETTINGS MODEL
# =============================================================================

class ServerSettings(BaseModel):
    """Network interface and cookie/CORS policy."""
    model_config = ConfigDict(frozen=True)

    interface: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    alloworigin: Optional[str] = None
    domain: Optional[str] = None
    https: bool = False


class CsvSettings(BaseModel):
    """Where the CSV data comes from and how to read it."""
    model_config = ConfigDict(frozen=True)

    uri: str = Field(..., min_length=1)
    delimiter: str = ","
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("delimiter")
    @classmethod
    def _single_character(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError("delimiter must be exactly one character")
        return value


class SecretSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    app: str = Field(..., min_length=1)
    csrf: str = Field(..., min_length=1)
    jwt: str = Field(..., min_length=1)


class Settings(BaseSettings):
    """
    Immutable settings snapshot.

    Attributes:
        server: interface/port, CORS origin and cookie flags
        csv: CSV source locator, delimiter and Basic Auth credentials
        secrets: identity cookie, CSRF and session signing keys
    """
    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    csv: CsvSettings
    secrets: SecretSettings

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        config_dir = Path(os.getenv("APP_CONFIG_DIR", DEFAULT_CONFIG_DIR))
        app_env = os.getenv("APP_ENV", DEFAULT_APP_ENV)

        # Earlier sources win; nested tables are merged key by key
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=config_dir / "local.toml"),
            TomlConfigSettingsSource(settings_cls, toml_file=config_dir / f"{app_env}.toml"),
            TomlConfigSettingsSource(settings_cls, toml_file=config_dir / "default.toml"),
        )


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Merge every configuration layer into one frozen Settings value.

    Args:
        overrides: Nested dict of CLI overrides, e.g. {"csv": {"delimiter": ";"}}

    Returns:
        The merged Settings

    Raises:
        ConfigurationError: If a required value is missing or invalid
    """
    load_dotenv(override=False)

    try:
        return Settings(**(overrides or {}))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc
