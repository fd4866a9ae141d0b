"""
Runtime settings for the regeneration worker and launcher.

Settings are resolved once (from keyword arguments or the environment) and
handed to the components that need them, so tests can build a worker with
zero delays without touching globals.
"""

import os
from typing import Dict, Optional

from .env import env_float, env_int

DEFAULT_DATABASE_URL = "sqlite:///data/embedding_jobs.db"
BACKEND_FUNCTION_PATH = "/functions/v1/regenerate-embeddings"

BATCH_LIMIT = 100
BATCH_DELAY = 0.5  # seconds between successful batches
RETRY_DELAY = 5.0  # seconds between attempts at the same offset
REQUEST_TIMEOUT = 300.0
ERROR_TRUNCATE = 200
LOG_TRUNCATE = 100


class RegenSettings:
    """Configuration injected into the backend client, store and worker."""

    def __init__(
        self,
        backend_url: str = "",
        backend_key: str = "",
        database_url: str = DEFAULT_DATABASE_URL,
        batch_limit: int = BATCH_LIMIT,
        batch_delay: float = BATCH_DELAY,
        retry_delay: float = RETRY_DELAY,
        request_timeout: float = REQUEST_TIMEOUT,
        error_truncate: int = ERROR_TRUNCATE,
        log_truncate: int = LOG_TRUNCATE,
    ):
        if batch_limit <= 0:
            raise ValueError("batch_limit must be positive")
        if batch_delay < 0 or retry_delay < 0:
            raise ValueError("delays must not be negative")

        self.backend_url = backend_url
        self.backend_key = backend_key
        self.database_url = database_url
        self.batch_limit = batch_limit
        self.batch_delay = batch_delay
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self.error_truncate = error_truncate
        self.log_truncate = log_truncate

    @classmethod
    def from_env(cls, **overrides) -> "RegenSettings":
        """
        Build settings from environment variables.

        EMBEDDING_BACKEND_URL takes precedence; otherwise the URL is derived
        from SUPABASE_URL. Keyword overrides win over both.
        """
        backend_url = os.getenv("EMBEDDING_BACKEND_URL", "")
        if not backend_url:
            base = os.getenv("SUPABASE_URL", "").rstrip("/")
            backend_url = f"{base}{BACKEND_FUNCTION_PATH}" if base else ""

        values = {
            "backend_url": backend_url,
            "backend_key": os.getenv("SUPABASE_ANON_KEY", ""),
            "database_url": os.getenv("EMBEDREGEN_DATABASE_URL", DEFAULT_DATABASE_URL),
            "batch_limit": env_int("EMBEDREGEN_BATCH_LIMIT", BATCH_LIMIT),
            "batch_delay": env_float("EMBEDREGEN_BATCH_DELAY", BATCH_DELAY),
            "retry_delay": env_float("EMBEDREGEN_RETRY_DELAY", RETRY_DELAY),
            "request_timeout": env_float("EMBEDREGEN_REQUEST_TIMEOUT", REQUEST_TIMEOUT),
        }
        values.update(overrides)
        return cls(**values)

    def to_env(self) -> Dict[str, str]:
        """Environment variables that reproduce these settings in a child process."""
        return {
            "EMBEDDING_BACKEND_URL": self.backend_url,
            "SUPABASE_ANON_KEY": self.backend_key,
            "EMBEDREGEN_DATABASE_URL": self.database_url,
            "EMBEDREGEN_BATCH_LIMIT": str(self.batch_limit),
            "EMBEDREGEN_BATCH_DELAY": str(self.batch_delay),
            "EMBEDREGEN_RETRY_DELAY": str(self.retry_delay),
            "EMBEDREGEN_REQUEST_TIMEOUT": str(self.request_timeout),
        }

    def require_backend(self) -> None:
        if not self.backend_url:
            raise SystemExit(
                "Backend URL not set. Set EMBEDDING_BACKEND_URL or SUPABASE_URL."
            )


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    return text if len(text) <= limit else text[:limit]
