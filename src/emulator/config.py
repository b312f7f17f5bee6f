"""
Emulator Configuration

Settings for the in-memory document store service, read from EMULATOR_*
environment variables or a .env file.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmulatorConfig(BaseSettings):
    """
    Local Store Emulator Configuration

    Example: EMULATOR_PORT=5984 python -m src.emulator.service
    """

    model_config = SettingsConfigDict(
        env_prefix="EMULATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Interface the service binds to"
    )
    port: int = Field(
        default=5984,
        description="Port the service listens on"
    )
    default_limit: int = Field(
        default=25,
        ge=1,
        description="_find page size when the query carries no limit"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )


config = EmulatorConfig()


def get_config() -> EmulatorConfig:
    return config
