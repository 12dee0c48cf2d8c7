"""Runtime configuration read from ``DUCKBRIDGE_*`` environment variables."""

import logging
import multiprocessing
from functools import lru_cache

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class DuckBridgeSettings(BaseSettings):
    """Database, script-runtime and logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DUCKBRIDGE_",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+pysqlite:///:memory:",
        description="SQLAlchemy URL used when no URL is passed explicitly",
    )
    echo_sql: bool = Field(default=False, description="Echo SQL statements to logs")
    script_start_method: str = Field(
        default="spawn",
        description="multiprocessing start method for script runtimes",
    )
    shutdown_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Seconds to wait for a script runtime to exit before terminating it",
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level for the duckbridge logger tree",
    )

    @field_validator("script_start_method")
    @classmethod
    def _known_start_method(cls, value: str) -> str:
        available: list[str] = multiprocessing.get_all_start_methods()
        if value not in available:
            msg = f"start method {value!r} is not available here; choose one of {available}"
            raise ValueError(msg)
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        normalized: str = value.upper()
        if isinstance(logging.getLevelName(normalized), int) is False:
            msg = f"unknown log level: {value!r}"
            raise ValueError(msg)
        return normalized


@lru_cache
def get_settings() -> DuckBridgeSettings:
    """Return the cached settings singleton.

    Call ``get_settings.cache_clear()`` to pick up environment changes.

    :returns: Settings instance.
    """
    return DuckBridgeSettings()


def configure_logging(settings: DuckBridgeSettings | None = None) -> None:
    """Apply the configured level to the ``duckbridge`` logger tree.

    :param settings: Settings to apply; defaults to :func:`get_settings`.
    """
    if settings is None:
        settings = get_settings()
    level_name: str = settings.log_level.upper()
    logging.getLogger("duckbridge").setLevel(level_name)
