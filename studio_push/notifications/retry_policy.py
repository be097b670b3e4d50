"""Fixed backoff table for failed push deliveries."""

from __future__ import annotations

import datetime
from dataclasses import dataclass

RETRY_BACKOFF_MINUTES: tuple[int, ...] = (5, 15, 60)


@dataclass(frozen=True)
class RetryDecision:
  """Outcome of a failed delivery: the bookkeeping to persist on the record."""

  will_retry: bool
  retry_count: int
  next_retry_at: datetime.datetime | None


def next_retry_delay(retry_count: int) -> datetime.timedelta:
  """Return the wait before the next attempt, clamped to the last table entry."""
  index = min(max(retry_count, 0), len(RETRY_BACKOFF_MINUTES) - 1)
  return datetime.timedelta(minutes=RETRY_BACKOFF_MINUTES[index])


def decide_retry(*, retry_count: int, max_retries: int, now: datetime.datetime) -> RetryDecision:
  """Decide whether a failed record goes back to the queue or becomes terminal.

  `retry_count` is the count before this failure. The failure itself is counted
  first, so a record at `max_retries - 1` becomes terminal.
  """
  attempts = retry_count + 1
  will_retry = attempts < max_retries
  next_retry_at = now + next_retry_delay(retry_count) if will_retry else None
  return RetryDecision(will_retry=will_retry, retry_count=attempts, next_retry_at=next_retry_at)
