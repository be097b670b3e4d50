import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from studio_push.core.database import dispose_db_engine
from studio_push.core.logging import _initialize_logging
from studio_push.notifications.factory import build_token_cache


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the app-scoped token cache; release DB connections on shutdown."""
  from studio_push.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("studio_push.core.lifespan")

  try:
    _initialize_logging(settings)
  except Exception:
    # Fall back to stderr logging rather than refusing to serve.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  app.state.token_cache = build_token_cache(settings)
  logger.info("Startup complete environment=%s pg_dsn=%s batch_limit=%s token_cache=%s", settings.environment, _redact_dsn(settings.pg_dsn), settings.batch_limit, app.state.token_cache is not None)

  if not (settings.firebase_service_account_json or settings.firebase_service_account_json_path):
    logger.warning("FIREBASE_SERVICE_ACCOUNT is not configured; processing runs will fail until it is set.")
  if not settings.push_vapid_public_key:
    logger.warning("PUSH_VAPID_PUBLIC_KEY is not configured; browsers cannot create new push subscriptions.")

  try:
    yield
  finally:
    await dispose_db_engine()


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
