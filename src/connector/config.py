"""
Connector Configuration

This module provides configuration management for the CouchDB connector using Pydantic Settings.
All configuration values can be set via environment variables or .env file.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectorConfig(BaseSettings):
    """
    CouchDB Connector Configuration

    All settings can be overridden via environment variables.
    Example: COUCH_URL=http://127.0.0.1:5984 COUCH_DATABASE=people
    """

    model_config = SettingsConfigDict(
        env_prefix="COUCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========== Store Configuration ==========
    url: str = Field(
        default="http://127.0.0.1:5984",
        description="CouchDB server base URL"
    )
    database: str = Field(
        default="couchbridge",
        description="Database holding the model documents"
    )
    username: Optional[str] = Field(
        default=None,
        description="Basic auth user name (optional)"
    )
    password: Optional[str] = Field(
        default=None,
        description="Basic auth password (optional)"
    )

    # ========== HTTP Timeout Configuration ==========
    http_connect_timeout: float = Field(
        default=5,
        description="HTTP connection timeout in seconds"
    )
    http_read_timeout: float = Field(
        default=30,
        description="HTTP read timeout in seconds"
    )

    # ========== Document Layout ==========
    model_key: str = Field(
        default="docType",
        description="Body field naming the model a document belongs to"
    )
    design_docs: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Design documents pushed by autoupdate, keyed by name"
    )

    # ========== Operation Behaviour ==========
    revision_policy: Literal["fetch", "require"] = Field(
        default="fetch",
        description=(
            "'fetch' reads the current revision before save/replace/destroy; "
            "'require' writes with the revision the caller loaded or passed"
        )
    )
    page_size: int = Field(
        default=200,
        ge=1,
        description="Mango page size used when a find has no explicit limit"
    )

    # ========== Logging Configuration ==========
    log_level: Optional[str] = Field(
        default=None,
        description="Level for the src.connector logger (DEBUG, INFO, WARNING, ERROR, CRITICAL); unset leaves it to the application"
    )


# Global configuration instance
config = ConnectorConfig()


def get_config() -> ConnectorConfig:
    """
    Get the global configuration instance.

    DataSource falls back to this when no explicit config is passed.

    Returns:
        ConnectorConfig: The global configuration instance
    """
    return config
