"""Response models for the notification processing endpoint."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from studio_push.notifications.orchestrator import RecordResult, RunSummary


class NotificationResultModel(BaseModel):
  """Per-record outcome as reported to operational tooling."""

  id: str
  type: str
  status: Literal["success", "failed", "error", "expired"]
  message_id: str | None = Field(default=None, serialization_alias="messageId")
  error: str | None = None
  will_retry: bool | None = Field(default=None, serialization_alias="willRetry")
  model_config = ConfigDict(extra="forbid")

  @classmethod
  def from_result(cls, result: RecordResult) -> NotificationResultModel:
    return cls(id=str(result.id), type=result.type, status=result.status, message_id=result.message_id, error=result.error, will_retry=result.will_retry)


class ProcessNotificationsResponse(BaseModel):
  """Run summary returned when at least one notification was due."""

  success: bool = True
  processed: int
  successful: int
  failed: int
  expired: int = 0
  results: list[NotificationResultModel]
  timestamp: str

  @classmethod
  def from_summary(cls, summary: RunSummary, *, timestamp: str) -> ProcessNotificationsResponse:
    results = [NotificationResultModel.from_result(result) for result in summary.results]
    return cls(processed=summary.processed, successful=summary.successful, failed=summary.failed, expired=summary.expired, results=results, timestamp=timestamp)


class NoPendingNotificationsResponse(BaseModel):
  """Returned when the queue has nothing due."""

  success: bool = True
  message: str = "No pending notifications"
  processed: int = 0
  timestamp: str
