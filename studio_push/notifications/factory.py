"""Factory helpers for the notification pipeline."""

from __future__ import annotations

import functools

from studio_push.config import Settings
from studio_push.notifications.contracts import TokenProvider
from studio_push.notifications.credential_signer import AccessTokenCache, ServiceAccountTokenProvider, load_service_account
from studio_push.notifications.delivery_client import FcmDeliveryClient
from studio_push.notifications.orchestrator import BatchOrchestrator
from studio_push.notifications.schedule_repo import NotificationScheduleRepository, NullNotificationScheduleRepository


def build_token_cache(settings: Settings) -> AccessTokenCache | None:
  """Build the token cache the app keeps between runs, when enabled."""
  if not settings.token_cache_enabled:
    return None
  return AccessTokenCache(ServiceAccountTokenProvider(timeout_seconds=settings.push_http_timeout_seconds))


def build_orchestrator(settings: Settings, *, token_cache: AccessTokenCache | None = None) -> BatchOrchestrator:
  """Construct an orchestrator for one invocation based on environment configuration."""
  # Without a DSN there is no queue to read; the null repository keeps the endpoint answering.
  if settings.pg_dsn:
    store: NotificationScheduleRepository = NotificationScheduleRepository()
  else:
    store = NullNotificationScheduleRepository()

  token_provider: TokenProvider = token_cache if token_cache is not None else ServiceAccountTokenProvider(timeout_seconds=settings.push_http_timeout_seconds)

  # Re-read the credential on every run so rotated secrets take effect without a restart.
  credential_loader = functools.partial(load_service_account, raw_json=settings.firebase_service_account_json, path=settings.firebase_service_account_json_path)

  return BatchOrchestrator(
    store=store,
    token_provider=token_provider,
    delivery_client=FcmDeliveryClient(timeout_seconds=settings.push_http_timeout_seconds),
    credential_loader=credential_loader,
    batch_limit=settings.batch_limit,
  )
