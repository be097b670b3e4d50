from __future__ import annotations

import datetime

import httpx
import pytest

from studio_push.notifications.contracts import INVALID_TOKEN, NO_TOKEN, SEND_ERROR, UNEXPECTED_ERROR, BearerToken, CredentialError, DeliveryFailure, DeliverySuccess, ServiceAccountCredential, TokenExchangeError, TransportError
from studio_push.notifications.credential_signer import ServiceAccountTokenProvider
from studio_push.notifications.delivery_client import FcmDeliveryClient
from studio_push.notifications.orchestrator import BatchOrchestrator

NOW = datetime.datetime(2025, 3, 1, 18, 0, tzinfo=datetime.UTC)


class InMemoryStore:
  """Records state transitions the way the Postgres repository would apply them."""

  def __init__(self, batch, *, fail_logs: bool = False, fail_processing: bool = False, fail_sent: bool = False) -> None:
    self.batch = list(batch)
    self.fail_logs = fail_logs
    self.fail_processing = fail_processing
    self.fail_sent = fail_sent
    self.updates: dict = {}
    self.logs: list = []
    self.fetch_calls: list = []

  async def fetch_due_batch(self, *, limit, now):
    self.fetch_calls.append((limit, now))
    return self.batch[:limit]

  async def mark_processing(self, schedule_id, *, now):
    if self.fail_processing:
      raise ConnectionError("write failed")
    self.updates.setdefault(schedule_id, {}).update(status="processing")

  async def mark_sent(self, schedule_id, *, now):
    if self.fail_sent:
      raise ConnectionError("connection reset")
    self.updates.setdefault(schedule_id, {}).update(status="sent", sent_at=now)

  async def mark_failed_or_retry(self, schedule_id, *, retry_count, next_retry_at, last_error, now):
    status = "scheduled" if next_retry_at is not None else "failed"
    self.updates.setdefault(schedule_id, {}).update(status=status, retry_count=retry_count, next_retry_at=next_retry_at, last_error=last_error)

  async def mark_expired(self, schedule_id, *, now):
    self.updates.setdefault(schedule_id, {}).update(status="expired")

  async def append_log(self, entry):
    if self.fail_logs:
      raise RuntimeError("log table unavailable")
    self.logs.append(entry)


class FakeTokenProvider:
  def __init__(self, *, error: Exception | None = None) -> None:
    self.calls = 0
    self.error = error

  async def get_access_token(self, credential):
    self.calls += 1
    if self.error is not None:
      raise self.error
    return BearerToken(access_token="ya29.batch", expires_at=NOW + datetime.timedelta(hours=1))


class ScriptedDeliveryClient:
  """Returns queued outcomes in order; exceptions in the script are raised."""

  def __init__(self, *outcomes) -> None:
    self.outcomes = list(outcomes)
    self.sent: list = []

  async def send(self, message, project_id, bearer_token):
    self.sent.append((message, project_id, bearer_token))
    outcome = self.outcomes.pop(0)
    if isinstance(outcome, Exception):
      raise outcome
    return outcome


class RecordingTransport(httpx.MockTransport):
  """Mock transport that keeps every request it answers."""

  def __init__(self, status_code: int = 200, json_body: dict | None = None) -> None:
    self.requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
      self.requests.append(request)
      return httpx.Response(status_code, json=json_body if json_body is not None else {})

    super().__init__(handler)


def _orchestrator(store, delivery, *, token_provider=None, credential_loader=None, service_account=None, batch_limit=50):
  return BatchOrchestrator(
    store=store,
    token_provider=token_provider or FakeTokenProvider(),
    delivery_client=delivery,
    credential_loader=credential_loader or (lambda: service_account),
    batch_limit=batch_limit,
    clock=lambda: NOW,
  )


@pytest.mark.anyio
async def test_successful_send_marks_record_sent(schedule_factory, service_account):
  schedule = schedule_factory()
  store = InMemoryStore([schedule])
  delivery = ScriptedDeliveryClient(DeliverySuccess(message_id="projects/studio-test/messages/1"))

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert (summary.processed, summary.successful, summary.failed) == (1, 1, 0)
  assert summary.results[0].status == "success"
  assert summary.results[0].message_id == "projects/studio-test/messages/1"
  assert store.updates[schedule.id] == {"status": "sent", "sent_at": NOW}
  assert [log.log_type for log in store.logs] == ["sent_success"]
  assert store.logs[0].success is True
  assert delivery.sent[0][1] == "studio-test"


@pytest.mark.anyio
async def test_quota_rejection_schedules_retry(schedule_factory, service_account):
  schedule = schedule_factory(retry_count=0, max_retries=3)
  store = InMemoryStore([schedule])
  quota_error = {"error": {"code": 403, "message": "Quota exceeded for project studio-test", "status": "PERMISSION_DENIED"}}
  transport = RecordingTransport(403, quota_error)

  summary = await _orchestrator(store, FcmDeliveryClient(transport=transport), service_account=service_account).run()

  result = summary.results[0]
  assert result.status == "failed"
  assert result.will_retry is True
  assert len(transport.requests) == 1
  assert store.updates[schedule.id]["status"] == "scheduled"
  assert store.updates[schedule.id]["retry_count"] == 1
  assert store.updates[schedule.id]["next_retry_at"] == NOW + datetime.timedelta(minutes=5)
  assert store.updates[schedule.id]["last_error"] == "Quota exceeded for project studio-test"
  log = store.logs[0]
  assert (log.log_type, log.success, log.http_status_code, log.error_code) == ("sent_failure", False, 403, "PERMISSION_DENIED")


@pytest.mark.anyio
async def test_last_allowed_failure_is_terminal(schedule_factory, service_account):
  schedule = schedule_factory(retry_count=2, max_retries=3)
  store = InMemoryStore([schedule])
  delivery = ScriptedDeliveryClient(DeliveryFailure(code="UNAVAILABLE", message="Service unavailable", http_status=503))

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert summary.results[0].will_retry is False
  assert store.updates[schedule.id]["status"] == "failed"
  assert store.updates[schedule.id]["retry_count"] == 3
  assert store.updates[schedule.id]["next_retry_at"] is None


@pytest.mark.anyio
async def test_missing_push_token_fails_without_provider_call(schedule_factory, service_account):
  schedule = schedule_factory(push_token=None)
  store = InMemoryStore([schedule])
  transport = RecordingTransport(200, {"name": "projects/studio-test/messages/unexpected"})

  summary = await _orchestrator(store, FcmDeliveryClient(transport=transport), service_account=service_account).run()

  assert summary.results[0].status == "failed"
  assert summary.results[0].error == "No push token available"
  assert transport.requests == []
  assert store.logs[0].error_code == NO_TOKEN
  assert store.updates[schedule.id]["status"] == "scheduled"


@pytest.mark.anyio
async def test_malformed_push_token_is_a_record_failure(schedule_factory, service_account):
  schedule = schedule_factory(push_token="%%%not-base64%%%")
  store = InMemoryStore([schedule])

  summary = await _orchestrator(store, ScriptedDeliveryClient(), service_account=service_account).run()

  assert summary.results[0].status == "failed"
  assert store.logs[0].error_code == INVALID_TOKEN


@pytest.mark.anyio
async def test_partial_batch_continues_after_errors(schedule_factory, service_account):
  first = schedule_factory(priority=9)
  second = schedule_factory(priority=5)
  third = schedule_factory(priority=1)
  store = InMemoryStore([first, second, third])
  delivery = ScriptedDeliveryClient(
    DeliverySuccess(message_id="m-1"),
    RuntimeError("unexpected provider crash"),
    TransportError("connection reset"),
  )

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert [result.status for result in summary.results] == ["success", "error", "failed"]
  assert (summary.processed, summary.successful, summary.failed) == (3, 1, 2)
  assert store.updates[second.id]["status"] == "failed"
  assert store.updates[second.id]["retry_count"] == 1
  assert store.updates[second.id]["last_error"] == "unexpected provider crash"
  assert store.logs[1].error_code == UNEXPECTED_ERROR
  assert store.logs[2].error_code == SEND_ERROR
  assert summary.results[2].will_retry is True


@pytest.mark.anyio
async def test_expired_record_is_not_sent(schedule_factory, service_account):
  schedule = schedule_factory(expires_at=NOW - datetime.timedelta(minutes=1))
  store = InMemoryStore([schedule])
  delivery = ScriptedDeliveryClient()

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert summary.results[0].status == "expired"
  assert (summary.successful, summary.failed, summary.expired) == (0, 0, 1)
  assert delivery.sent == []
  assert store.updates[schedule.id] == {"status": "expired"}
  assert store.logs[0].log_type == "expired"


@pytest.mark.anyio
async def test_log_failures_do_not_abort_run(schedule_factory, service_account):
  schedule = schedule_factory()
  store = InMemoryStore([schedule], fail_logs=True)
  delivery = ScriptedDeliveryClient(DeliverySuccess(message_id="m-1"))

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert summary.results[0].status == "success"
  assert store.updates[schedule.id]["status"] == "sent"


@pytest.mark.anyio
async def test_processing_mark_failure_still_sends(schedule_factory, service_account):
  schedule = schedule_factory()
  store = InMemoryStore([schedule], fail_processing=True)
  delivery = ScriptedDeliveryClient(DeliverySuccess(message_id="m-1"))

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert summary.results[0].status == "success"
  assert len(delivery.sent) == 1


@pytest.mark.anyio
async def test_one_token_per_batch(schedule_factory, service_account):
  store = InMemoryStore([schedule_factory(), schedule_factory()])
  tokens = FakeTokenProvider()
  delivery = ScriptedDeliveryClient(DeliverySuccess(message_id="m-1"), DeliverySuccess(message_id="m-2"))

  await _orchestrator(store, delivery, token_provider=tokens, service_account=service_account).run()

  assert tokens.calls == 1
  assert delivery.sent[0][2] is delivery.sent[1][2]


@pytest.mark.anyio
async def test_empty_queue_skips_token_exchange(service_account):
  tokens = FakeTokenProvider()
  store = InMemoryStore([])

  summary = await _orchestrator(store, ScriptedDeliveryClient(), token_provider=tokens, service_account=service_account, batch_limit=25).run()

  assert summary.is_noop
  assert tokens.calls == 0
  assert store.fetch_calls == [(25, NOW)]


@pytest.mark.anyio
async def test_token_exchange_failure_aborts_before_records(schedule_factory, service_account):
  schedule = schedule_factory()
  store = InMemoryStore([schedule])
  delivery = ScriptedDeliveryClient()

  with pytest.raises(TokenExchangeError):
    await _orchestrator(store, delivery, token_provider=FakeTokenProvider(error=TokenExchangeError("invalid_grant", status_code=400)), service_account=service_account).run()

  assert store.updates == {}
  assert store.logs == []
  assert delivery.sent == []


@pytest.mark.anyio
async def test_delivered_message_stays_successful_when_mark_sent_fails(schedule_factory, service_account):
  schedule = schedule_factory()
  store = InMemoryStore([schedule], fail_sent=True)
  delivery = ScriptedDeliveryClient(DeliverySuccess(message_id="projects/studio-test/messages/7"))

  summary = await _orchestrator(store, delivery, service_account=service_account).run()

  assert len(delivery.sent) == 1
  assert summary.results[0].status == "success"
  assert (summary.successful, summary.failed) == (1, 0)
  assert store.updates[schedule.id] == {"status": "processing"}
  assert [(log.log_type, log.error_code) for log in store.logs] == [("sent_success", None)]


@pytest.mark.anyio
async def test_invalid_private_key_aborts_before_records(schedule_factory):
  schedule = schedule_factory()
  store = InMemoryStore([schedule])
  token_transport = RecordingTransport(200, {"access_token": "ya29.unused", "expires_in": 3600})
  send_transport = RecordingTransport(200, {"name": "projects/studio-test/messages/unused"})
  credential = ServiceAccountCredential(client_email="push@studio-test.iam.gserviceaccount.com", private_key="not a pem key", project_id="studio-test")

  orchestrator = _orchestrator(
    store,
    FcmDeliveryClient(transport=send_transport),
    token_provider=ServiceAccountTokenProvider(transport=token_transport, clock=lambda: NOW),
    credential_loader=lambda: credential,
  )

  with pytest.raises(CredentialError):
    await orchestrator.run()

  assert store.updates == {}
  assert store.logs == []
  assert token_transport.requests == []
  assert send_transport.requests == []
