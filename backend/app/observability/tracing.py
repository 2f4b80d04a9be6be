"""Tracing utilities wrapping Opik."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from app.observability import client as opik_client

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from opik.api_objects.trace.trace_client import Trace
else:  # pragma: no cover - typing helper
    Trace = object  # type: ignore[assignment]

logger = logging.getLogger(__name__)


@contextmanager
def trace(
    name: str,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Iterator[Optional["Trace"]]:
    """
    Open an Opik trace around a block of scheduling work.

    Yields None when Opik is disabled so callers can guard span updates with `if span:`.
    Exceptions raised in the block are attached to the trace and re-raised.
    """
    client = opik_client.get_opik_client()
    span: Optional["Trace"] = None

    if client:
        span_metadata = {k: v for k, v in (metadata or {}).items() if v is not None}
        if user_id:
            span_metadata.setdefault("user_id", str(user_id))
        if request_id:
            span_metadata.setdefault("request_id", request_id)
        try:
            span = client.trace(name=name, metadata=span_metadata or None)
        except Exception as exc:  # pragma: no cover - remote client failure
            logger.debug("Unable to start Opik trace %s: %s", name, exc)
            span = None

    try:
        yield span
    except Exception as exc:
        if span:
            try:
                span.update(error_info={"exception_type": type(exc).__name__, "message": str(exc)})
            except Exception:  # pragma: no cover
                logger.debug("Failed to attach error info to Opik trace %s", name, exc_info=True)
        raise
    finally:
        if span:
            try:
                span.end()
            except Exception:  # pragma: no cover
                logger.debug("Failed to close Opik trace %s cleanly", name, exc_info=True)
