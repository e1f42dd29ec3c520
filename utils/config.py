"""
Application settings read from the environment (and a local .env file).
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from models.job import JobConfig

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


def _get(name: str, fallbacks: Optional[List[str]] = None, default: Optional[str] = None) -> Optional[str]:
    for env_name in [name] + list(fallbacks or []):
        value = os.getenv(env_name)
        if value:
            return value
    return default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Provider and job defaults.

    Attributes:
        api_base_url: OpenAI-compatible base URL
        api_key: Provider key (may be empty for local servers)
        model: Model name sent with every request
        concurrency: Default job worker count
        pace_ms: Default pause between units
        max_retries: Default transport retry budget
        retry_delay_ms: Default wait between retries
        split_field_requests: Default for two-call "both" rewrites
        db_path: SQLite file for durable sessions ("" keeps data in memory)
    """

    api_base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    concurrency: int = 1
    pace_ms: int = 500
    max_retries: int = 2
    retry_delay_ms: int = 2000
    split_field_requests: bool = False
    db_path: str = ""

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Load settings from CURATOR_* variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        if dotenv:
            load_dotenv()
        return cls(
            api_base_url=_get("CURATOR_API_BASE_URL", ["OPENAI_BASE_URL"], DEFAULT_BASE_URL),
            api_key=_get("CURATOR_API_KEY", ["OPENAI_API_KEY"], ""),
            model=_get("CURATOR_MODEL", default=DEFAULT_MODEL),
            concurrency=_get_int("CURATOR_CONCURRENCY", 1),
            pace_ms=_get_int("CURATOR_PACE_MS", 500),
            max_retries=_get_int("CURATOR_MAX_RETRIES", 2),
            retry_delay_ms=_get_int("CURATOR_RETRY_DELAY_MS", 2000),
            split_field_requests=_get_bool("CURATOR_SPLIT_FIELDS", False),
            db_path=_get("CURATOR_DB_PATH", default=""),
        )

    def job_config(self, force: bool = False) -> JobConfig:
        return JobConfig(
            concurrency=self.concurrency,
            pace_ms=self.pace_ms,
            max_retries=self.max_retries,
            retry_delay_ms=self.retry_delay_ms,
            split_field_requests=self.split_field_requests,
            force=force,
        )
