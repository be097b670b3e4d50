"""Service-account assertion signing and OAuth token exchange for FCM v1."""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Callable
from pathlib import Path

import httpx
import jwt

from studio_push.notifications.contracts import BearerToken, CredentialError, ServiceAccountCredential, TokenExchangeError, TokenProvider

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def load_service_account(*, raw_json: str | None = None, path: str | None = None) -> ServiceAccountCredential:
  """Parse the service-account JSON from an env value or a file path."""
  if raw_json is None and path:
    try:
      raw_json = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
      raise CredentialError(f"Failed to read service account file: {exc}") from exc

  if not raw_json:
    raise CredentialError("FIREBASE_SERVICE_ACCOUNT not configured in environment variables")

  try:
    payload = json.loads(raw_json)
  except json.JSONDecodeError as exc:
    raise CredentialError("Service account credential is not valid JSON") from exc

  if not isinstance(payload, dict):
    raise CredentialError("Service account credential must be a JSON object")

  missing = [key for key in ("client_email", "private_key", "project_id") if not payload.get(key)]
  if missing:
    raise CredentialError(f"Service account credential is missing fields: {', '.join(missing)}")

  # Env-injected keys frequently carry escaped newlines.
  private_key = str(payload["private_key"]).replace("\\n", "\n")
  token_uri = str(payload.get("token_uri") or ServiceAccountCredential.token_uri)
  return ServiceAccountCredential(client_email=str(payload["client_email"]), private_key=private_key, project_id=str(payload["project_id"]), token_uri=token_uri)


def build_signed_assertion(credential: ServiceAccountCredential, *, now: datetime.datetime) -> str:
  """Build a three-part RS256 JWT assertion for the OAuth jwt-bearer grant."""
  issued_at = int(now.timestamp())
  claims = {
    "iss": credential.client_email,
    "sub": credential.client_email,
    "aud": credential.token_uri,
    "iat": issued_at,
    "exp": issued_at + TOKEN_LIFETIME_SECONDS,
    "scope": FCM_SCOPE,
  }

  # PyJWT raises InvalidKeyError (a PyJWTError) for keys it cannot parse.
  try:
    return jwt.encode(claims, credential.private_key, algorithm="RS256", headers={"typ": "JWT"})
  except (jwt.exceptions.PyJWTError, ValueError, TypeError) as exc:
    raise CredentialError("Service account private key is malformed") from exc


class ServiceAccountTokenProvider(TokenProvider):
  """Exchanges signed service-account assertions for bearer tokens."""

  def __init__(self, *, timeout_seconds: float = 10.0, transport: httpx.AsyncBaseTransport | None = None, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
    self._timeout_seconds = timeout_seconds
    self._transport = transport
    self._clock = clock

  def _build_client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds, trust_env=False)

  async def get_access_token(self, credential: ServiceAccountCredential) -> BearerToken:
    """Sign an assertion and exchange it at the token endpoint. No retries."""
    now = self._clock()
    assertion = build_signed_assertion(credential, now=now)

    async with self._build_client() as client:
      try:
        response = await client.post(credential.token_uri, data={"grant_type": JWT_BEARER_GRANT_TYPE, "assertion": assertion})
      except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Failed to reach token endpoint: {exc}") from exc

    if response.status_code >= 400:
      logger.error("Token exchange rejected status=%s body=%s", response.status_code, response.text)
      raise TokenExchangeError(f"Failed to get access token: {response.text}", status_code=response.status_code, body=response.text)

    try:
      body = response.json()
    except ValueError as exc:
      raise TokenExchangeError("Token endpoint returned a non-JSON body", status_code=response.status_code, body=response.text) from exc

    access_token = body.get("access_token") if isinstance(body, dict) else None
    if not access_token:
      raise TokenExchangeError("Token endpoint response did not include access_token", status_code=response.status_code, body=response.text)

    expires_in = int(body.get("expires_in") or TOKEN_LIFETIME_SECONDS)
    logger.info("Obtained FCM access token for %s expires_in=%s", credential.client_email, expires_in)
    return BearerToken(access_token=str(access_token), expires_at=now + datetime.timedelta(seconds=expires_in))


class AccessTokenCache(TokenProvider):
  """Reuses bearer tokens across runs until shortly before they expire.

  Owned by whoever builds the orchestrator (the FastAPI app keeps one on
  `app.state`), so the cache lifetime is explicit.
  """

  def __init__(self, provider: TokenProvider, *, skew_seconds: int = 60, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
    self._provider = provider
    self._skew_seconds = skew_seconds
    self._clock = clock
    self._tokens: dict[str, BearerToken] = {}

  async def get_access_token(self, credential: ServiceAccountCredential) -> BearerToken:
    cached = self._tokens.get(credential.client_email)
    if cached is not None and cached.is_valid(now=self._clock(), skew_seconds=self._skew_seconds):
      logger.debug("Reusing cached FCM access token for %s", credential.client_email)
      return cached

    token = await self._provider.get_access_token(credential)
    self._tokens[credential.client_email] = token
    return token

  def clear(self) -> None:
    self._tokens.clear()
