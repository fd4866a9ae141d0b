"""
Client for the embedding regeneration backend.

The backend is a black box that embeds one slice of a table per call and
reports where the next slice starts. The worker never computes offsets
itself; it only moves to the nextOffset returned here.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config import RegenSettings
from .errors import NetworkError, OpaqueBackendError, TransientBackendError
from .logger import get_logger
from .retry import is_transient_error

logger = get_logger()

RESTART_SENTINEL = "Restart from offset=0"


@dataclass
class BatchRequest:
    table: str
    offset: int
    limit: int
    model: str
    dimensions: int
    only_missing: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "offset": self.offset,
            "limit": self.limit,
            "model": self.model,
            "dimensions": self.dimensions,
            "onlyMissing": self.only_missing,
        }


@dataclass
class BatchResult:
    processed: int
    next_offset: int
    has_more: bool
    total_count: int
    message: Optional[str] = None

    @property
    def restart_sweep(self) -> bool:
        """Backend asks for a new only-missing pass from offset 0."""
        return self.next_offset == 0 and RESTART_SENTINEL in (self.message or "")


def _raise_backend_error(text: str, status_code: Optional[int] = None):
    if is_transient_error(text):
        raise TransientBackendError(text, status_code=status_code)
    raise OpaqueBackendError(text, status_code=status_code)


def parse_batch_response(payload: Any, request: BatchRequest) -> BatchResult:
    """
    Turn a 200 response body into a BatchResult.

    Raises:
        TransientBackendError / OpaqueBackendError: If the payload carries an
            error field or is not an object
    """
    if not isinstance(payload, dict):
        raise OpaqueBackendError(f"Unexpected response payload: {payload!r}"[:500])

    error = payload.get("error")
    if error:
        _raise_backend_error(str(error), status_code=200)

    processed = int(payload.get("processed") or 0)
    next_offset = payload.get("nextOffset")
    if next_offset is None:
        # "No more rows" replies omit nextOffset and hasMore
        next_offset = request.offset + processed

    return BatchResult(
        processed=processed,
        next_offset=int(next_offset),
        has_more=bool(payload.get("hasMore", False)),
        total_count=int(payload.get("totalCount") or 0),
        message=payload.get("message"),
    )


class EmbeddingBackendClient:
    """Synchronous caller of the regenerate-embeddings endpoint."""

    def __init__(self, settings: RegenSettings, session: Optional[requests.Session] = None):
        self.url = settings.backend_url
        self.timeout = settings.request_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if settings.backend_key:
            self.session.headers.update({"Authorization": f"Bearer {settings.backend_key}"})

    def process_batch(self, request: BatchRequest) -> BatchResult:
        """
        Ask the backend to embed one batch starting at request.offset.

        Raises:
            NetworkError: The backend could not be reached
            TransientBackendError: Failure text matches a transient pattern
            OpaqueBackendError: Any other backend failure
        """
        logger.debug("Requesting batch", table=request.table, offset=request.offset, limit=request.limit)
        try:
            resp = self.session.post(self.url, json=request.to_payload(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        if not resp.ok:
            _raise_backend_error(resp.text or f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            raise OpaqueBackendError(
                f"Invalid JSON from backend: {resp.text[:200]}", status_code=resp.status_code
            ) from e

        return parse_batch_response(payload, request)

    def close(self) -> None:
        self.session.close()
