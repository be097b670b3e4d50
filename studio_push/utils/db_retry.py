"""Retry helper for idempotent queue writes that hit transient database errors."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Serialization failure and deadlock are safe to replay for primary-key updates.
_RETRYABLE_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock"}
_CONNECTION_PATTERNS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification result for a database failure."""

  retryable: bool
  category: str
  sqlstate: str | None


def _extract_sqlstate(exc: Exception) -> str | None:
  """Extract the Postgres SQLSTATE from a wrapped driver exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    for attribute in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: Exception) -> DBFailureClassification:
  """Decide whether a failed write is worth replaying."""
  sqlstate = _extract_sqlstate(exc)
  if sqlstate in _RETRYABLE_SQLSTATES:
    return DBFailureClassification(retryable=True, category=_RETRYABLE_SQLSTATES[sqlstate], sqlstate=sqlstate)

  if isinstance(exc, IntegrityError) or (sqlstate and sqlstate.startswith("23")):
    return DBFailureClassification(retryable=False, category="integrity_error", sqlstate=sqlstate)

  if isinstance(exc, OperationalError):
    message = str(exc).lower()
    if any(pattern in message for pattern in _CONNECTION_PATTERNS):
      return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)
    return DBFailureClassification(retryable=False, category="operational_error_unknown", sqlstate=sqlstate)

  if isinstance(exc, (ConnectionError, TimeoutError)):
    return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)

  return DBFailureClassification(retryable=False, category="unknown_error", sqlstate=sqlstate)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 2, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000) -> T:
  """Run an idempotent database operation, replaying transient failures with jittered backoff."""
  attempt = 0
  while True:
    attempt += 1
    try:
      return await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, retryable=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.retryable,
      )
      if not classification.retryable or attempt >= max_attempts:
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      backoff_ms += random.uniform(-backoff_ms * 0.25, backoff_ms * 0.25)
      await asyncio.sleep(backoff_ms / 1000.0)
