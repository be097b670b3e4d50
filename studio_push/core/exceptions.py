import datetime
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("uvicorn.error")


def utc_timestamp(moment: datetime.datetime | None = None) -> str:
  """ISO 8601 UTC timestamp with millisecond precision, e.g. `2025-01-01T10:00:00.000Z`."""
  moment = moment or datetime.datetime.now(datetime.UTC)
  return moment.astimezone(datetime.UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def error_payload(message: str) -> dict[str, str]:
  """Body shared by every 500 response: `{error, timestamp}`."""
  return {"error": message, "timestamp": utc_timestamp()}


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger.error("Global exception path=%s error_type=%s", request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_payload("Internal Server Error"))
