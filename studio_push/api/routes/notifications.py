"""Trigger endpoint for the scheduled notification processor."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from studio_push.api.models import NoPendingNotificationsResponse, ProcessNotificationsResponse
from studio_push.config import Settings, get_settings
from studio_push.core.exceptions import error_payload, utc_timestamp
from studio_push.notifications.contracts import NotificationError
from studio_push.notifications.factory import build_orchestrator
from studio_push.notifications.orchestrator import BatchOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

# Origins are handled by CORSMiddleware; plain OPTIONS probes still get the allowed headers.
CORS_HEADERS = {"Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-task-secret", "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS"}


def get_orchestrator(request: Request, settings: Annotated[Settings, Depends(get_settings)]) -> BatchOrchestrator:
  """Build a fresh orchestrator per invocation, sharing the app-scoped token cache."""
  return build_orchestrator(settings, token_cache=getattr(request.app.state, "token_cache", None))


def require_task_secret(settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_task_secret: str | None = Header(default=None)) -> None:
  """Enforce the shared secret when one is configured."""
  if not settings.task_secret:
    return

  shared_secret_valid = secrets.compare_digest(x_task_secret or "", settings.task_secret)
  bearer_valid = secrets.compare_digest(authorization or "", f"Bearer {settings.task_secret}")
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /process-notifications")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


@router.options("/process-notifications", include_in_schema=False)
async def process_notifications_preflight() -> PlainTextResponse:
  """CORS preflight."""
  return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.api_route("/process-notifications", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], dependencies=[Depends(require_task_secret)])
async def process_notifications(orchestrator: Annotated[BatchOrchestrator, Depends(get_orchestrator)]) -> JSONResponse:
  """Run one pass over the due notification queue and report the outcome."""
  logger.info("Starting notification processing")
  try:
    summary = await orchestrator.run()
  except NotificationError as exc:
    logger.error("Fatal error in notification processing code=%s error=%s", exc.code, exc, exc_info=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_payload(str(exc)), headers=CORS_HEADERS)
  except Exception as exc:  # noqa: BLE001
    logger.error("Fatal error in notification processing: %s", exc, exc_info=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_payload(str(exc) or type(exc).__name__), headers=CORS_HEADERS)

  if summary.is_noop:
    body = NoPendingNotificationsResponse(timestamp=utc_timestamp(summary.finished_at)).model_dump()
  else:
    body = ProcessNotificationsResponse.from_summary(summary, timestamp=utc_timestamp(summary.finished_at)).model_dump(by_alias=True, exclude_none=True)
  return JSONResponse(status_code=status.HTTP_200_OK, content=body, headers=CORS_HEADERS)
