"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional, List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="Brandshot", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3001, description="Server port")

    # Storage Configuration
    storage_path: Path = Field(default=Path("./storage"), description="Storage directory path")
    screenshots_path: Optional[Path] = Field(
        default=None, description="Directory for stored screenshots (defaults under storage_path)"
    )
    public_screenshots_prefix: str = Field(
        default="/screenshots", description="URL prefix stored screenshots are served from"
    )

    # Browser Configuration
    playwright_headless: bool = Field(default=True, description="Run browser in headless mode")
    browser_pool_size: int = Field(default=2, ge=1, description="Maximum concurrent browser sessions")
    pool_queue_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a request may wait for a free session"
    )
    pool_backpressure: str = Field(
        default="queue", description="Behaviour when the pool is full: queue or reject"
    )
    viewport_width: int = Field(default=1280, gt=0, description="Capture viewport width")
    viewport_height: int = Field(default=1280, gt=0, description="Capture viewport height")

    # Capture Configuration
    navigation_timeout: float = Field(default=30.0, gt=0, description="Navigation timeout in seconds")
    request_timeout: float = Field(
        default=60.0, gt=0, description="Total capture timeout in seconds, queue wait included"
    )
    overlay_band_height: int = Field(default=60, gt=0, description="Overlay band height in pixels")
    overlay_settle_delay: float = Field(
        default=0.5, ge=0, description="Seconds to wait after DOM injection before capture"
    )
    overlay_subtitle: str = Field(
        default="url", description="Overlay subtitle source: url, timestamp or none"
    )
    compositing_strategy: str = Field(
        default="dom_injection", description="Overlay strategy: dom_injection or raster"
    )
    delivery_variant: str = Field(
        default="binary", description="Response format: binary, data_uri or file_ref"
    )

    # Security Configuration
    allowed_hosts: List[str] = Field(default=["*"], description="Allowed origins for CORS")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("pool_backpressure")
    @classmethod
    def validate_pool_backpressure(cls, v: str) -> str:
        allowed = {"queue", "reject"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"Pool backpressure must be one of: {allowed}")
        return v

    @field_validator("overlay_subtitle")
    @classmethod
    def validate_overlay_subtitle(cls, v: str) -> str:
        allowed = {"url", "timestamp", "none"}
        v = v.lower()
        if v not in allowed:
            raise ValueError(f"Overlay subtitle must be one of: {allowed}")
        return v

    @field_validator("compositing_strategy", "delivery_variant")
    @classmethod
    def normalize_choice(cls, v: str) -> str:
        """Normalise selector values; unknown names are rejected by the pipeline factories."""
        return v.strip().lower().replace("-", "_")

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            # Handle JSON-like string: ["*"] or ["host1", "host2"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "*" or "host1,host2"
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    @model_validator(mode="after")
    def create_directories(self) -> "Settings":
        """Ensure storage directories exist."""
        if self.screenshots_path is None:
            self.screenshots_path = self.storage_path / "screenshots"
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.screenshots_path.mkdir(parents=True, exist_ok=True)
        return self

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="BRANDSHOT_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
