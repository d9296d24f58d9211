"""Configuration management for the Modelia Studio backend.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the MODELIA_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (MODELIA_* prefix)
2. .env file in the project root
3. Default values defined in ModeliaConfig

Example .env file:
    MODELIA_ENVIRONMENT=production
    MODELIA_JWT_SECRET=change-me-to-something-long
    MODELIA_DATABASE_URL=sqlite:///./data/modelia.db
    MODELIA_UPLOADS_DIR=uploads

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI app factory falls back to it when no explicit settings object is
passed, which is what the ``modelia`` CLI does.

Usage Example
-------------
    from modelia.core.config import config

    print(config.uploads_dir)
    print(config.breaker_reset_timeout_seconds)

Simulation Settings
-------------------
The default generation backend is a stand-in for a real inference call:
- fault_probability: chance that a request fails with "model overloaded" (0.2)
- delay_min_seconds / delay_max_seconds: simulated latency window (1-2 s)

Circuit Breaker Settings
------------------------
Every repository operation is wrapped by its own breaker. All breakers share
these process-wide settings:
- breaker_timeout_seconds: per-call timeout
- breaker_error_threshold_percentage: failure rate that opens the breaker
- breaker_reset_timeout_seconds: how long an open breaker waits before probing
- breaker_rolling_window_seconds: window the failure rate is computed over
- breaker_volume_threshold: minimum calls in the window before it can open
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ModeliaConfig(BaseSettings):
    """Main configuration for the Modelia Studio backend.

    Values are loaded from environment variables with the MODELIA_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Runtime:
        environment : Literal["development", "production", "test"]
            Controls whether unexpected error messages are exposed to clients
        log_level : str
            Root log level used by the CLI entry point

    Persistence:
        database_url : str
            SQLAlchemy database URL (SQLite by default)
        uploads_dir : Path
            Base directory of the per-user file namespace

    Authentication:
        jwt_secret : str
            HMAC secret used to sign bearer tokens
        jwt_algorithm : str
            JWT signing algorithm
        jwt_expires_days : int
            Token lifetime in days
        bcrypt_rounds : int
            bcrypt work factor (4-16)

    Uploads:
        max_upload_bytes : int
            Largest accepted image upload
        allowed_image_types : list[str]
            Accepted upload content types

    Generation:
        generation_backend : str
            Name of the registered generation backend
        fault_probability : float
            Probability of a simulated "model overloaded" failure
        delay_min_seconds / delay_max_seconds : float
            Simulated processing latency window
        history_limit : int
            Default number of generations returned by the history listing

    Circuit breaker:
        breaker_timeout_seconds, breaker_error_threshold_percentage,
        breaker_reset_timeout_seconds, breaker_rolling_window_seconds,
        breaker_volume_threshold

    Server:
        server_host : str
        server_port : int
        cors_origins : list[str]

    Notes
    -----
    - uploads_dir and the parent directory of a file-based SQLite database are
      created automatically
    - Configuration is immutable after initialization; set environment
      variables and restart to change it

    Examples
    --------
        >>> custom = ModeliaConfig(
        ...     environment="development",
        ...     fault_probability=0.0,
        ...     delay_min_seconds=0.0,
        ...     delay_max_seconds=0.0,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MODELIA_",
        case_sensitive=False,
    )

    # Runtime
    environment: Literal["development", "production", "test"] = Field(
        default="production",
        description="Runtime environment; development exposes raw error messages",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./data/modelia.db",
        description="SQLAlchemy database URL",
    )
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Base directory for per-user uploads and results",
    )

    # Authentication
    jwt_secret: str = Field(
        default="dev-secret-change-me",
        description="Secret used to sign bearer tokens",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expires_days: int = Field(default=7, ge=1, description="Token lifetime in days")
    bcrypt_rounds: int = Field(default=10, ge=4, le=16, description="bcrypt work factor")

    # Uploads
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Maximum accepted image size in bytes",
    )
    allowed_image_types: list[str] = Field(
        default=["image/jpeg", "image/png", "image/jpg"],
        description="Accepted upload content types",
    )

    # Generation
    generation_backend: str = Field(
        default="simulated",
        description="Registered generation backend to use",
    )
    fault_probability: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Probability of a simulated 'model overloaded' failure",
    )
    delay_min_seconds: float = Field(default=1.0, ge=0.0)
    delay_max_seconds: float = Field(default=2.0, ge=0.0)
    history_limit: int = Field(default=5, ge=1, description="Default history size")

    # Circuit breaker
    breaker_timeout_seconds: float = Field(default=3.0, gt=0.0)
    breaker_error_threshold_percentage: float = Field(default=50.0, gt=0.0, le=100.0)
    breaker_reset_timeout_seconds: float = Field(default=30.0, gt=0.0)
    breaker_rolling_window_seconds: float = Field(default=10.0, gt=0.0)
    breaker_volume_threshold: int = Field(default=5, ge=1)

    # Server
    server_host: str = Field(default="0.0.0.0", description="Server bind address")
    server_port: int = Field(default=3001, ge=1024, le=65535, description="Server port")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @model_validator(mode="after")
    def _check_delay_window(self) -> "ModeliaConfig":
        if self.delay_max_seconds < self.delay_min_seconds:
            raise ValueError("delay_max_seconds must be >= delay_min_seconds")
        return self

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)

        sqlite_path = self.sqlite_path
        if sqlite_path is not None:
            sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def sqlite_path(self) -> Path | None:
        """Filesystem path of a file-based SQLite database, else None."""
        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix) :]
        if not raw or raw == ":memory:":
            return None
        return Path(raw)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


# Global configuration instance
# Loads values from environment variables (MODELIA_* prefix) and .env file.
config = ModeliaConfig()
