"""Contracts for scheduled push notification delivery."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

NO_TOKEN = "NO_TOKEN"
INVALID_TOKEN = "INVALID_TOKEN"
INVALID_PAYLOAD = "INVALID_PAYLOAD"
PROVIDER_ERROR = "PROVIDER_ERROR"
SEND_ERROR = "SEND_ERROR"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class NotificationAction:
  """Action button rendered by the service worker."""

  action: str
  title: str
  icon: str | None = None


@dataclass(frozen=True)
class MessagePayload:
  """Content stored on the schedule row in `message_payload`."""

  title: str | None
  body: str | None
  icon: str | None = None
  badge: str | None = None
  image: str | None = None
  data: dict[str, Any] = field(default_factory=dict, hash=False)
  actions: tuple[NotificationAction, ...] = ()

  @classmethod
  def from_json(cls, raw: dict[str, Any] | None) -> MessagePayload:
    """Build a payload from the JSONB column, tolerating missing keys."""
    raw = raw or {}
    actions: list[NotificationAction] = []
    for item in raw.get("actions") or []:
      if isinstance(item, dict) and item.get("action") and item.get("title"):
        actions.append(NotificationAction(action=str(item["action"]), title=str(item["title"]), icon=item.get("icon")))

    data = raw.get("data")
    return cls(
      title=raw.get("title"),
      body=raw.get("body"),
      icon=raw.get("icon"),
      badge=raw.get("badge"),
      image=raw.get("image"),
      data=dict(data) if isinstance(data, dict) else {},
      actions=tuple(actions),
    )


@dataclass(frozen=True)
class NotificationSchedule:
  """A queued notification as read from `notification_schedules`."""

  id: uuid.UUID
  booking_id: uuid.UUID | None
  user_id: uuid.UUID | None
  notification_type: str
  scheduled_for: datetime.datetime
  status: str
  priority: int
  retry_count: int
  max_retries: int
  message_payload: MessagePayload
  push_token: str | None = None
  next_retry_at: datetime.datetime | None = None
  last_error: str | None = None
  sent_at: datetime.datetime | None = None
  cancelled_at: datetime.datetime | None = None
  expires_at: datetime.datetime | None = None


@dataclass(frozen=True)
class NotificationLogEntry:
  """Append-only audit record for one processing attempt."""

  schedule_id: uuid.UUID
  user_id: uuid.UUID | None
  booking_id: uuid.UUID | None
  notification_type: str | None
  log_type: str
  success: bool
  channel_used: str = "push"
  http_status_code: int | None = None
  error_code: str | None = None
  error_message: str | None = None
  provider_response: dict[str, Any] | None = None
  processing_time_ms: int | None = None


@dataclass(frozen=True)
class ServiceAccountCredential:
  """Signer identity loaded from the Firebase service-account JSON."""

  client_email: str
  private_key: str = field(repr=False)
  project_id: str
  token_uri: str = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class BearerToken:
  """OAuth access token with its absolute expiry."""

  access_token: str = field(repr=False)
  expires_at: datetime.datetime

  def is_valid(self, *, now: datetime.datetime, skew_seconds: int = 60) -> bool:
    return now + datetime.timedelta(seconds=skew_seconds) < self.expires_at


@dataclass(frozen=True)
class ProviderMessage:
  """FCM v1 message envelope; `token` is None when the record has no target."""

  token: str | None
  notification: dict[str, str]
  data: dict[str, str]
  webpush: dict[str, Any]

  def to_request_body(self) -> dict[str, Any]:
    """Return the JSON body expected by `messages:send`."""
    return {"message": {"token": self.token, "notification": self.notification, "data": self.data, "webpush": self.webpush}}


@dataclass(frozen=True)
class DeliverySuccess:
  """Provider accepted the message."""

  message_id: str
  provider_response: dict[str, Any] | None = None
  success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class DeliveryFailure:
  """Provider (or a pre-send check) rejected the message."""

  code: str
  message: str
  http_status: int | None = None
  provider_response: dict[str, Any] | None = None
  success: bool = field(default=False, init=False)


DeliveryResult = DeliverySuccess | DeliveryFailure


class NotificationError(Exception):
  """Base class for all notification pipeline failures."""

  code = "NOTIFICATION_ERROR"


class CredentialError(NotificationError):
  """Service-account credential is missing, malformed or cannot sign."""

  code = "CREDENTIAL_ERROR"


class TokenExchangeError(NotificationError):
  """OAuth token endpoint rejected the signed assertion."""

  code = "TOKEN_EXCHANGE_ERROR"

  def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.body = body


class ValidationError(NotificationError):
  """A record cannot be turned into a deliverable message."""

  code = INVALID_PAYLOAD


class PayloadValidationError(ValidationError):
  """The record's payload or push token is malformed."""

  def __init__(self, message: str, *, code: str = INVALID_PAYLOAD) -> None:
    super().__init__(message)
    self.code = code


class TransportError(NotificationError):
  """Network-level failure reaching the provider."""

  code = SEND_ERROR


class DeliveryClient(Protocol):
  """Delivery contract for the push provider."""

  async def send(self, message: ProviderMessage, project_id: str, bearer_token: BearerToken) -> DeliveryResult:
    """Send a message and classify the provider response."""


class TokenProvider(Protocol):
  """Source of bearer tokens for the push provider."""

  async def get_access_token(self, credential: ServiceAccountCredential) -> BearerToken:
    """Return a bearer token valid for the push-messaging scope."""
