"""Batch processing of due push notifications."""

from __future__ import annotations

import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from studio_push.notifications.contracts import (
  SEND_ERROR,
  UNEXPECTED_ERROR,
  BearerToken,
  DeliveryClient,
  DeliveryFailure,
  DeliveryResult,
  DeliverySuccess,
  NotificationLogEntry,
  NotificationSchedule,
  ServiceAccountCredential,
  TokenProvider,
  TransportError,
  ValidationError,
)
from studio_push.notifications.payload_builder import build_payload
from studio_push.notifications.retry_policy import decide_retry

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 50

ResultStatus = Literal["success", "failed", "error", "expired"]


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class ScheduleStore(Protocol):
  """Queue operations the orchestrator depends on."""

  async def fetch_due_batch(self, *, limit: int, now: datetime.datetime) -> list[NotificationSchedule]: ...

  async def mark_processing(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None: ...

  async def mark_sent(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None: ...

  async def mark_failed_or_retry(self, schedule_id: uuid.UUID, *, retry_count: int, next_retry_at: datetime.datetime | None, last_error: str | None, now: datetime.datetime) -> None: ...

  async def mark_expired(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None: ...

  async def append_log(self, entry: NotificationLogEntry) -> None: ...


@dataclass(frozen=True)
class RecordResult:
  """Outcome of one record within a run."""

  id: uuid.UUID
  type: str
  status: ResultStatus
  message_id: str | None = None
  error: str | None = None
  will_retry: bool | None = None


@dataclass(frozen=True)
class RunSummary:
  """Aggregate outcome of one orchestrator run."""

  processed: int
  successful: int
  failed: int
  expired: int
  results: list[RecordResult] = field(default_factory=list)
  finished_at: datetime.datetime = field(default_factory=_utcnow)

  @property
  def is_noop(self) -> bool:
    return self.processed == 0

  @classmethod
  def from_results(cls, results: list[RecordResult], *, finished_at: datetime.datetime) -> RunSummary:
    successful = sum(1 for result in results if result.status == "success")
    failed = sum(1 for result in results if result.status in ("failed", "error"))
    expired = sum(1 for result in results if result.status == "expired")
    return cls(processed=len(results), successful=successful, failed=failed, expired=expired, results=results, finished_at=finished_at)


class BatchOrchestrator:
  """Drives due notifications through signing, payload shaping, delivery and retry bookkeeping.

  Records are processed strictly one after another. A credential or token
  failure aborts the run before any record is touched; anything that goes
  wrong with an individual record is contained to that record.
  """

  def __init__(
    self,
    *,
    store: ScheduleStore,
    token_provider: TokenProvider,
    delivery_client: DeliveryClient,
    credential_loader: Callable[[], ServiceAccountCredential],
    batch_limit: int = DEFAULT_BATCH_LIMIT,
    clock: Callable[[], datetime.datetime] = _utcnow,
  ) -> None:
    self._store = store
    self._token_provider = token_provider
    self._delivery_client = delivery_client
    self._credential_loader = credential_loader
    self._batch_limit = batch_limit
    self._clock = clock

  async def run(self) -> RunSummary:
    """Process one bounded batch of due notifications."""
    credential = self._credential_loader()
    batch = await self._store.fetch_due_batch(limit=self._batch_limit, now=self._clock())

    if not batch:
      logger.info("No pending notifications to process")
      return RunSummary.from_results([], finished_at=self._clock())

    logger.info("Processing %d notifications", len(batch))
    # One token per batch.
    bearer_token = await self._token_provider.get_access_token(credential)

    results: list[RecordResult] = []
    for schedule in batch:
      results.append(await self._process_record(schedule, project_id=credential.project_id, bearer_token=bearer_token))

    summary = RunSummary.from_results(results, finished_at=self._clock())
    logger.info("Processing complete processed=%d successful=%d failed=%d expired=%d", summary.processed, summary.successful, summary.failed, summary.expired)
    return summary

  async def _process_record(self, schedule: NotificationSchedule, *, project_id: str, bearer_token: BearerToken) -> RecordResult:
    started = time.perf_counter()
    try:
      now = self._clock()
      if schedule.expires_at is not None and schedule.expires_at <= now:
        return await self._expire(schedule, now=now, started=started)

      await self._mark_processing(schedule, now=now)
      delivery = await self._deliver(schedule, project_id=project_id, bearer_token=bearer_token)

      if isinstance(delivery, DeliverySuccess):
        return await self._record_success(schedule, delivery, started=started)
      return await self._record_failure(schedule, delivery, started=started)

    except Exception as exc:  # noqa: BLE001
      logger.error("Error processing notification %s: %s", schedule.id, exc, exc_info=True)
      await self._record_error(schedule, exc, started=started)
      return RecordResult(id=schedule.id, type=schedule.notification_type, status="error", error=_error_text(exc))

  async def _mark_processing(self, schedule: NotificationSchedule, *, now: datetime.datetime) -> None:
    # Advisory only: delivery proceeds even when this write fails.
    try:
      await self._store.mark_processing(schedule.id, now=now)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to mark notification %s as processing: %s", schedule.id, exc)

  async def _deliver(self, schedule: NotificationSchedule, *, project_id: str, bearer_token: BearerToken) -> DeliveryResult:
    logger.info("Processing notification %s (%s)", schedule.id, schedule.notification_type)
    try:
      message = build_payload(schedule)
      return await self._delivery_client.send(message, project_id, bearer_token)
    except ValidationError as exc:
      return DeliveryFailure(code=exc.code, message=str(exc))
    except TransportError as exc:
      return DeliveryFailure(code=SEND_ERROR, message=str(exc))

  async def _record_success(self, schedule: NotificationSchedule, delivery: DeliverySuccess, *, started: float) -> RecordResult:
    # The provider already accepted the message; a failed write must not turn it into a failure.
    try:
      await self._store.mark_sent(schedule.id, now=self._clock())
    except Exception as exc:  # noqa: BLE001
      logger.error("Notification %s was delivered but could not be marked sent: %s", schedule.id, exc, exc_info=True)

    await self._append_log(
      _log_entry(schedule, log_type="sent_success", success=True, provider_response={"messageId": delivery.message_id, "response": delivery.provider_response}, started=started)
    )
    logger.info("Notification %s sent message_id=%s", schedule.id, delivery.message_id)
    return RecordResult(id=schedule.id, type=schedule.notification_type, status="success", message_id=delivery.message_id)

  async def _record_failure(self, schedule: NotificationSchedule, delivery: DeliveryFailure, *, started: float) -> RecordResult:
    now = self._clock()
    decision = decide_retry(retry_count=schedule.retry_count, max_retries=schedule.max_retries, now=now)
    await self._store.mark_failed_or_retry(schedule.id, retry_count=decision.retry_count, next_retry_at=decision.next_retry_at, last_error=delivery.message, now=now)
    await self._append_log(
      _log_entry(
        schedule,
        log_type="sent_failure",
        success=False,
        http_status_code=delivery.http_status,
        error_code=delivery.code,
        error_message=delivery.message,
        provider_response=delivery.provider_response,
        started=started,
      )
    )
    logger.warning("Notification %s failed code=%s error=%s will_retry=%s", schedule.id, delivery.code, delivery.message, decision.will_retry)
    return RecordResult(id=schedule.id, type=schedule.notification_type, status="failed", error=delivery.message, will_retry=decision.will_retry)

  async def _expire(self, schedule: NotificationSchedule, *, now: datetime.datetime, started: float) -> RecordResult:
    await self._store.mark_expired(schedule.id, now=now)
    await self._append_log(_log_entry(schedule, log_type="expired", success=False, error_code="EXPIRED", error_message="Notification expired before delivery", started=started))
    logger.info("Notification %s expired at %s; skipping delivery", schedule.id, schedule.expires_at)
    return RecordResult(id=schedule.id, type=schedule.notification_type, status="expired")

  async def _append_log(self, entry: NotificationLogEntry) -> None:
    # Audit writes are best effort and never change a record's outcome.
    try:
      await self._store.append_log(entry)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to append %s log for notification %s: %s", entry.log_type, entry.schedule_id, exc)

  async def _record_error(self, schedule: NotificationSchedule, exc: Exception, *, started: float) -> None:
    error_text = _error_text(exc)
    try:
      await self._store.mark_failed_or_retry(schedule.id, retry_count=schedule.retry_count + 1, next_retry_at=None, last_error=error_text, now=self._clock())
    except Exception as write_exc:  # noqa: BLE001
      logger.error("Failed to persist error state for notification %s: %s", schedule.id, write_exc)

    await self._append_log(_log_entry(schedule, log_type="sent_failure", success=False, error_code=UNEXPECTED_ERROR, error_message=error_text, started=started))


def _error_text(exc: BaseException) -> str:
  return str(exc) or type(exc).__name__


def _log_entry(
  schedule: NotificationSchedule,
  *,
  log_type: str,
  success: bool,
  started: float,
  http_status_code: int | None = None,
  error_code: str | None = None,
  error_message: str | None = None,
  provider_response: dict[str, Any] | None = None,
) -> NotificationLogEntry:
  return NotificationLogEntry(
    schedule_id=schedule.id,
    user_id=schedule.user_id,
    booking_id=schedule.booking_id,
    notification_type=schedule.notification_type,
    log_type=log_type,
    success=success,
    http_status_code=http_status_code,
    error_code=error_code,
    error_message=error_message,
    provider_response=provider_response,
    processing_time_ms=int((time.perf_counter() - started) * 1000),
  )
