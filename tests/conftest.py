"""Test configuration for importing the application package."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import base64  # noqa: E402
import datetime  # noqa: E402
import json  # noqa: E402
import uuid  # noqa: E402

import pytest  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402

from studio_push.notifications.contracts import MessagePayload, NotificationSchedule, ServiceAccountCredential  # noqa: E402

FIXED_NOW = datetime.datetime(2025, 3, 1, 18, 0, tzinfo=datetime.UTC)


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
  return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
  return rsa_private_key.private_bytes(encoding=serialization.Encoding.PEM, format=serialization.PrivateFormat.PKCS8, encryption_algorithm=serialization.NoEncryption()).decode("utf-8")


@pytest.fixture
def service_account(private_key_pem) -> ServiceAccountCredential:
  return ServiceAccountCredential(client_email="push@studio-test.iam.gserviceaccount.com", private_key=private_key_pem, project_id="studio-test")


@pytest.fixture
def service_account_json(private_key_pem) -> str:
  return json.dumps({"type": "service_account", "project_id": "studio-test", "client_email": "push@studio-test.iam.gserviceaccount.com", "private_key": private_key_pem})


def encode_push_token(endpoint: str) -> str:
  """Encode a browser subscription the way the web client stores it."""
  subscription = {"endpoint": endpoint, "expirationTime": None, "keys": {"p256dh": "BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2", "auth": "gq8Yh5xA9l2mQ6pR"}}
  return base64.b64encode(json.dumps(subscription).encode("utf-8")).decode("ascii")


def make_schedule(**overrides) -> NotificationSchedule:
  """Build a due schedule record with sensible defaults."""
  values = {
    "id": uuid.uuid4(),
    "booking_id": uuid.uuid4(),
    "user_id": uuid.uuid4(),
    "notification_type": "reminder_24h",
    "scheduled_for": FIXED_NOW - datetime.timedelta(minutes=1),
    "status": "scheduled",
    "priority": 3,
    "retry_count": 0,
    "max_retries": 3,
    "message_payload": MessagePayload(title="Tu clase es mañana", body="Spinning 18:00 con Ana", icon="/icons/icon-192x192.png"),
    "push_token": encode_push_token("https://fcm.googleapis.com/fcm/send/registration-abc"),
  }
  values.update(overrides)
  return NotificationSchedule(**values)


@pytest.fixture
def fixed_now() -> datetime.datetime:
  return FIXED_NOW


@pytest.fixture
def schedule_factory():
  return make_schedule


@pytest.fixture
def push_token_factory():
  return encode_push_token
