"""Runtime settings and structured logging for the exchange tools."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KEPSettings(BaseSettings):
    """Defaults for instance generation, matching and the optimal benchmark."""

    model_config = SettingsConfigDict(env_prefix="KEP_")

    log_level: str = Field("INFO", description="Standard logging level name.")
    num_pairs: int = Field(10, ge=0, description="Pairs generated per hospital.")
    max_surgeries: int = Field(
        6,
        ge=0,
        description="Surgery slots available to one matching run.",
    )
    seed: Optional[int] = Field(None, description="Seed for numpy random generators.")
    solver: str = Field("CBC", description="PuLP backend used by the optimal benchmark.")
    max_cycle_length: int = Field(
        3,
        ge=2,
        description="Longest cycle enumerated by the optimal benchmark.",
    )
    time_limit: Optional[int] = Field(None, description="Solver time limit in seconds.")


@lru_cache(maxsize=1)
def get_settings() -> KEPSettings:
    return KEPSettings()


def _get_shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(settings: Optional[KEPSettings] = None) -> None:
    """Configure structlog on top of standard logging."""
    settings = settings or get_settings()
    structlog.configure(
        processors=[
            *_get_shared_processors(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(message)s",
    )
