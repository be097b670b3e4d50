"""Shape queued notifications into FCM v1 message envelopes."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from studio_push.notifications.contracts import INVALID_TOKEN, NotificationSchedule, PayloadValidationError, ProviderMessage

FCM_ENDPOINT_PREFIX = "https://fcm.googleapis.com/fcm/send/"
DEFAULT_ACTION_URL = "/account/bookings"
DEFAULT_ICON = "/icons/icon-192x192.png"
DEFAULT_BADGE = "/icons/badge-72x72.png"
HIGH_PRIORITY_THRESHOLD = 5


def extract_registration_token(push_token: str) -> str:
  """Decode a base64 browser subscription blob and return the FCM registration token."""
  normalized = push_token.strip().replace("-", "+").replace("_", "/")
  normalized += "=" * (-len(normalized) % 4)
  try:
    decoded = json.loads(base64.b64decode(normalized, validate=True))
  except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
    raise PayloadValidationError("Push token could not be decoded", code=INVALID_TOKEN) from exc

  endpoint = decoded.get("endpoint") if isinstance(decoded, dict) else None
  if not isinstance(endpoint, str) or not endpoint.strip():
    raise PayloadValidationError("Push token has no endpoint", code=INVALID_TOKEN)

  registration_token = endpoint.strip().removeprefix(FCM_ENDPOINT_PREFIX)
  if not registration_token:
    raise PayloadValidationError("Push token endpoint has no registration token", code=INVALID_TOKEN)

  return registration_token


def _stringify(value: Any) -> str:
  # FCM data values must be strings.
  if isinstance(value, str):
    return value
  if isinstance(value, bool):
    return "true" if value else "false"
  if isinstance(value, dict | list | tuple):
    return json.dumps(value, separators=(",", ":"), sort_keys=True)
  return str(value)


def _build_data(schedule: NotificationSchedule) -> dict[str, str]:
  data = {str(key): _stringify(value) for key, value in schedule.message_payload.data.items() if value is not None}
  data["notificationId"] = str(schedule.id)
  if schedule.booking_id is not None:
    data["bookingId"] = str(schedule.booking_id)
  data["type"] = schedule.notification_type
  data["actionUrl"] = data.get("actionUrl") or DEFAULT_ACTION_URL
  return data


def build_payload(schedule: NotificationSchedule) -> ProviderMessage:
  """Build the provider message for a schedule record.

  Pure and deterministic. A record without a push token yields a message with
  `token=None`; the delivery client turns that into a `NO_TOKEN` failure.
  """
  payload = schedule.message_payload
  title = (payload.title or "").strip()
  body = (payload.body or "").strip()
  if not title or not body:
    raise PayloadValidationError("Notification payload requires a title and body")

  token = extract_registration_token(schedule.push_token) if schedule.push_token else None

  notification = {"title": title, "body": body}
  image = payload.image or payload.icon
  if image:
    notification["image"] = image

  data = _build_data(schedule)
  high_priority = schedule.priority >= HIGH_PRIORITY_THRESHOLD

  webpush_notification: dict[str, Any] = {
    "icon": payload.icon or DEFAULT_ICON,
    "badge": payload.badge or DEFAULT_BADGE,
    "tag": schedule.notification_type,
    "requireInteraction": high_priority,
  }
  if high_priority and payload.actions:
    webpush_notification["actions"] = [{key: value for key, value in (("action", action.action), ("title", action.title), ("icon", action.icon)) if value} for action in payload.actions]

  webpush = {
    "headers": {"Urgency": "high" if high_priority else "normal"},
    "notification": webpush_notification,
  }
  return ProviderMessage(token=token, notification=notification, data=data, webpush=webpush)
