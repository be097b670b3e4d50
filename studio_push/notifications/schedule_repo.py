"""Repository for the durable notification queue and its audit log."""

from __future__ import annotations

import datetime
import logging
import uuid

from sqlalchemy import Select, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studio_push.core.database import get_session_factory
from studio_push.notifications.contracts import MessagePayload, NotificationLogEntry, NotificationSchedule
from studio_push.schema.notifications import NotificationLogRow, NotificationScheduleRow
from studio_push.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)


def due_batch_statement(*, limit: int, now: datetime.datetime) -> Select[tuple[NotificationScheduleRow]]:
  """Select due records: highest priority first, oldest first within a priority."""
  return (
    select(NotificationScheduleRow)
    .where(
      NotificationScheduleRow.status == "scheduled",
      NotificationScheduleRow.scheduled_for <= now,
      or_(NotificationScheduleRow.next_retry_at.is_(None), NotificationScheduleRow.next_retry_at <= now),
    )
    .order_by(NotificationScheduleRow.priority.desc(), NotificationScheduleRow.scheduled_for.asc())
    .limit(limit)
  )


def _to_schedule(row: NotificationScheduleRow) -> NotificationSchedule:
  return NotificationSchedule(
    id=row.id,
    booking_id=row.booking_id,
    user_id=row.user_id,
    notification_type=row.notification_type,
    scheduled_for=row.scheduled_for,
    status=row.status,
    priority=row.priority,
    retry_count=row.retry_count,
    max_retries=row.max_retries,
    message_payload=MessagePayload.from_json(row.message_payload),
    push_token=row.push_token,
    next_retry_at=row.next_retry_at,
    last_error=row.last_error,
    sent_at=row.sent_at,
    cancelled_at=row.cancelled_at,
    expires_at=row.expires_at,
  )


class NotificationScheduleRepository:
  """Read due notifications and persist their state transitions in Postgres.

  Every write is scoped by primary key. `mark_processing` is advisory and does
  not exclude concurrent runs.
  """

  async def fetch_due_batch(self, *, limit: int, now: datetime.datetime) -> list[NotificationSchedule]:
    """Return up to `limit` due records in send order."""
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      return await self._fetch_due_batch_with_session(session=session, limit=limit, now=now)

  async def _fetch_due_batch_with_session(self, *, session: AsyncSession, limit: int, now: datetime.datetime) -> list[NotificationSchedule]:
    result = await session.execute(due_batch_statement(limit=limit, now=now))
    return [_to_schedule(row) for row in result.scalars().all()]

  async def mark_processing(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None:
    await self._update(schedule_id, operation_name="mark_processing", values={"status": "processing", "updated_at": now})

  async def mark_sent(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None:
    await self._update(schedule_id, operation_name="mark_sent", values={"status": "sent", "sent_at": now, "updated_at": now})

  async def mark_failed_or_retry(self, schedule_id: uuid.UUID, *, retry_count: int, next_retry_at: datetime.datetime | None, last_error: str | None, now: datetime.datetime) -> None:
    """Requeue the record when a retry time is given, otherwise fail it for good."""
    status = "scheduled" if next_retry_at is not None else "failed"
    values = {"status": status, "retry_count": retry_count, "next_retry_at": next_retry_at, "last_error": last_error, "updated_at": now}
    await self._update(schedule_id, operation_name="mark_failed_or_retry", values=values)

  async def mark_expired(self, schedule_id: uuid.UUID, *, now: datetime.datetime) -> None:
    await self._update(schedule_id, operation_name="mark_expired", values={"status": "expired", "updated_at": now})

  async def _update(self, schedule_id: uuid.UUID, *, operation_name: str, values: dict) -> None:
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async def _run() -> None:
      async with session_factory() as session:
        await self._update_with_session(session=session, schedule_id=schedule_id, values=values)

    await execute_with_retry(operation_name=operation_name, func=_run)

  async def _update_with_session(self, *, session: AsyncSession, schedule_id: uuid.UUID, values: dict) -> None:
    stmt = update(NotificationScheduleRow).where(NotificationScheduleRow.id == schedule_id).values(**values)
    await session.execute(stmt)
    await session.commit()

  async def append_log(self, entry: NotificationLogEntry) -> None:
    """Insert an audit row. Failures are logged and never raised."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    try:
      async with session_factory() as session:
        await self._append_log_with_session(session=session, entry=entry)
    except Exception as exc:  # noqa: BLE001
      logger.error("Notification log insert failed schedule_id=%s log_type=%s error=%s", entry.schedule_id, entry.log_type, exc, exc_info=True)

  async def _append_log_with_session(self, *, session: AsyncSession, entry: NotificationLogEntry) -> None:
    record = NotificationLogRow(
      schedule_id=entry.schedule_id,
      user_id=entry.user_id,
      booking_id=entry.booking_id,
      log_type=entry.log_type,
      notification_type=entry.notification_type,
      channel_used=entry.channel_used,
      success=entry.success,
      http_status_code=entry.http_status_code,
      error_code=entry.error_code,
      error_message=entry.error_message,
      provider_response=entry.provider_response,
      processing_time_ms=entry.processing_time_ms,
    )
    session.add(record)
    await session.commit()


class NullNotificationScheduleRepository(NotificationScheduleRepository):
  """No-op repository used when the database is not configured."""

  async def fetch_due_batch(self, *, limit: int, now: datetime.datetime) -> list[NotificationSchedule]:
    logger.debug("Notification queue persistence disabled; nothing to fetch")
    return []

  async def _update(self, schedule_id: uuid.UUID, *, operation_name: str, values: dict) -> None:
    logger.debug("Notification queue persistence disabled; dropping %s for %s", operation_name, schedule_id)

  async def append_log(self, entry: NotificationLogEntry) -> None:
    logger.debug("Notification log persistence disabled; dropping log_type=%s", entry.log_type)
