"""SQLAlchemy models for the notification queue and its audit log.

The tables are owned by the hosted database; these mappings only describe the
columns this service reads and writes.
"""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from studio_push.core.database import Base


class NotificationScheduleRow(Base):
  """One intended notification send."""

  __tablename__ = "notification_schedules"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  booking_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
  user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
  notification_type: Mapped[str] = mapped_column(String, nullable=False)
  scheduled_for: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="scheduled", server_default="scheduled")
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")
  next_retry_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  cancelled_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  push_token: Mapped[str | None] = mapped_column(Text, nullable=True)
  message_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationLogRow(Base):
  """Append-only audit row per processing attempt."""

  __tablename__ = "notification_logs"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  schedule_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
  user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
  booking_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
  log_type: Mapped[str] = mapped_column(String, nullable=False)
  notification_type: Mapped[str | None] = mapped_column(String, nullable=True)
  channel_used: Mapped[str | None] = mapped_column(String, nullable=True)
  success: Mapped[bool] = mapped_column(Boolean, nullable=False)
  http_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
  error_code: Mapped[str | None] = mapped_column(String, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  provider_response: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
