"""
Configuration management for panic-report.

Settings are read from environment variables prefixed with PANIC_REPORT_
(or a .env file) and can be overridden from the command line.
"""

from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .normalizer import (
    DEFAULT_THIRD_PARTY_MARKERS,
    DEFAULT_VENDOR_MARKERS,
    InAppClassifier,
)


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LOG_FORMATS = ["json", "console"]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Ingestion endpoint
    dsn: Optional[str] = Field(default=None, description="DSN connection string for the ingestion endpoint")
    use_compression: bool = Field(default=True, description="Gzip request bodies")
    timeout_seconds: float = Field(default=5.0, description="HTTP request timeout in seconds")

    # Event attributes
    environment: Optional[str] = Field(default=None, description="Deployment environment attached to events")
    release: Optional[str] = Field(default=None, description="Release attached to events")
    server_name: Optional[str] = Field(default=None, description="Server name attached to events")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tags attached to every event")

    # In-app classification
    goroots: Optional[List[str]] = Field(default=None, description="Go installation roots; defaults to $GOROOT and common locations")
    vendor_markers: List[str] = Field(default_factory=lambda: list(DEFAULT_VENDOR_MARKERS), description="Path fragments of vendored dependencies")
    third_party_markers: List[str] = Field(default_factory=lambda: list(DEFAULT_THIRD_PARTY_MARKERS), description="Path fragments of third-party code")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log output format: json or console")

    class Config:
        env_prefix = "PANIC_REPORT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(LOG_LEVELS)}")
        return value

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"Log format must be one of: {', '.join(LOG_FORMATS)}")
        return value

    @property
    def reporting_enabled(self) -> bool:
        """Check if a DSN has been configured."""
        return bool(self.dsn)

    def build_classifier(self) -> InAppClassifier:
        """Create the in-app classifier described by these settings."""
        if self.goroots is None:
            classifier = InAppClassifier()
        else:
            classifier = InAppClassifier(goroots=list(self.goroots))
        classifier.vendor_markers = list(self.vendor_markers)
        classifier.third_party_markers = list(self.third_party_markers)
        return classifier


def load_settings(**overrides) -> Settings:
    """Load and validate settings, applying explicit overrides."""
    return Settings(**overrides)
