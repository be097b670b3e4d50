"""FCM v1 HTTP delivery client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from studio_push.notifications.contracts import NO_TOKEN, PROVIDER_ERROR, BearerToken, DeliveryClient, DeliveryFailure, DeliveryResult, DeliverySuccess, ProviderMessage, TransportError

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


class FcmDeliveryClient(DeliveryClient):
  """Sends provider messages with bearer auth and classifies the response.

  Provider rejections come back as `DeliveryFailure`; only transport-level
  problems raise (`TransportError`).
  """

  def __init__(self, *, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None, send_url: str = FCM_SEND_URL) -> None:
    self._timeout_seconds = timeout_seconds
    self._transport = transport
    self._send_url = send_url

  def _build_client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds, trust_env=False)

  async def send(self, message: ProviderMessage, project_id: str, bearer_token: BearerToken) -> DeliveryResult:
    """POST the message to the project-scoped send endpoint."""
    # Skip the round trip when there is nothing to deliver to.
    if message.token is None:
      return DeliveryFailure(code=NO_TOKEN, message="No push token available")

    url = self._send_url.format(project_id=project_id)
    headers = {"Authorization": f"Bearer {bearer_token.access_token}", "Content-Type": "application/json"}

    async with self._build_client() as client:
      try:
        response = await client.post(url, json=message.to_request_body(), headers=headers)
      except httpx.TransportError as exc:
        logger.error("FCM send transport failure: %s", exc)
        raise TransportError(str(exc) or type(exc).__name__) from exc

    body = _parse_body(response)
    message_id = body.get("name")
    if response.is_success and isinstance(message_id, str) and message_id:
      logger.debug("FCM accepted message_id=%s", message_id)
      return DeliverySuccess(message_id=message_id, provider_response=body)

    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    code = str(error.get("status") or PROVIDER_ERROR)
    error_message = str(error.get("message") or "FCM send failed")
    logger.warning("FCM rejected message status=%s code=%s error=%s", response.status_code, code, error_message)
    return DeliveryFailure(code=code, message=error_message, http_status=response.status_code, provider_response=body)


def _parse_body(response: httpx.Response) -> dict[str, Any]:
  """Decode a JSON object body, falling back to the raw text."""
  try:
    body = response.json()
  except ValueError:
    return {"raw": response.text} if response.text else {}

  if isinstance(body, dict):
    return body
  return {"raw": body}
