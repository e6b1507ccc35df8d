"""Fixtures shared by the ingest pipeline tests."""
import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import pytest

from services.ingest.app.core.signatures import compute_signature
from services.ingest.app.services.event_store import (
    CanonicalEvent,
    DuplicateRecordError,
    MissingActorError,
)


class _EventTypeRow:
    def __init__(self, source_system: str, original_event: str, standardized_event: str):
        self.source_system = source_system
        self.original_event = original_event
        self.standardized_event = standardized_event


class InMemoryEventStore:
    """EventStore fake with the same integrity semantics as the SQL store.

    Webhook request inserts are atomic under a lock (the unique constraint);
    ``count_recent_requests`` is deliberately not, and ``count_barrier`` lets a
    test line concurrent readers up before any of them writes.
    """

    def __init__(self, identities: Optional[set] = None):
        self._lock = threading.Lock()
        self.webhook_requests: list[dict[str, Any]] = []
        self.identities: set = set(identities or ())
        self.event_logs: dict[str, dict[str, Any]] = {}
        self.derived_requests: dict[str, dict[str, Any]] = {}
        self.audit_entries: dict[str, dict[str, Any]] = {}
        self.event_types: dict[tuple, _EventTypeRow] = {}
        self.failures: dict[str, Exception] = {}
        self.placeholder_inserts = 0
        self.count_barrier: Optional[threading.Barrier] = None

    def _maybe_fail(self, operation: str) -> None:
        exc = self.failures.get(operation)
        if exc is not None:
            raise exc

    def add_recent_requests(self, endpoint: str, count: int, received_at: Optional[datetime] = None):
        for _ in range(count):
            self.webhook_requests.append(
                {
                    "idempotency_key": str(uuid.uuid4()),
                    "endpoint": endpoint,
                    "timestamp": None,
                    "source_ip": None,
                    "received_at": received_at or datetime.now(UTC),
                }
            )

    def add_event_type(self, source_system: str, original_event: str, standardized_event: str):
        self.event_types[(source_system, original_event)] = _EventTypeRow(
            source_system, original_event, standardized_event
        )

    def record_webhook_request(self, idempotency_key, endpoint, timestamp, source_ip):
        self._maybe_fail("record_webhook_request")
        with self._lock:
            for row in self.webhook_requests:
                if row["idempotency_key"] == idempotency_key and row["endpoint"] == endpoint:
                    raise DuplicateRecordError("duplicate key value violates unique constraint")
            self.webhook_requests.append(
                {
                    "idempotency_key": idempotency_key,
                    "endpoint": endpoint,
                    "timestamp": timestamp,
                    "source_ip": source_ip,
                    "received_at": datetime.now(UTC),
                }
            )

    def count_recent_requests(self, endpoint, since):
        self._maybe_fail("count_recent_requests")
        count = sum(
            1
            for row in list(self.webhook_requests)
            if row["endpoint"] == endpoint and row["received_at"] >= since
        )
        if self.count_barrier is not None:
            self.count_barrier.wait(timeout=5)
        return count

    def insert_event_log(self, event: CanonicalEvent, actor_id: str) -> str:
        self._maybe_fail("insert_event_log")
        if actor_id not in self.identities:
            raise MissingActorError(f"actor {actor_id} does not exist")
        event_log_id = str(uuid.uuid4())
        self.event_logs[event_log_id] = {"event": event, "actor_id": actor_id}
        return event_log_id

    def ensure_placeholder_identity(self, actor_id: str) -> bool:
        self._maybe_fail("ensure_placeholder_identity")
        with self._lock:
            if actor_id in self.identities:
                return False
            self.identities.add(actor_id)
            self.placeholder_inserts += 1
            return True

    def insert_derived_request(self, event_log_id, event, actor_id):
        self._maybe_fail("insert_derived_request")
        derived_id = str(uuid.uuid4())
        self.derived_requests[derived_id] = {
            "event_log_id": event_log_id,
            "event": event,
            "actor_id": actor_id,
        }
        return derived_id

    def insert_audit_entry(
        self,
        event_name,
        event_data,
        project_id=None,
        actor_id=None,
        ip_address=None,
        user_agent=None,
    ):
        self._maybe_fail("insert_audit_entry")
        audit_id = str(uuid.uuid4())
        self.audit_entries[audit_id] = {
            "event_name": event_name,
            "event_data": event_data,
            "project_id": project_id,
            "actor_id": actor_id,
            "ip_address": ip_address,
            "user_agent": user_agent,
        }
        return audit_id

    def lookup_event_type(self, source_system, original_event):
        self._maybe_fail("lookup_event_type")
        return self.event_types.get((source_system, original_event))


PLACEHOLDER_ACTOR_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def memory_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def placeholder_actor_id() -> str:
    return PLACEHOLDER_ACTOR_ID


def _sign_headers(
    secret: str,
    body: bytes,
    timestamp: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> dict[str, str]:
    timestamp = timestamp or datetime.now(UTC).isoformat()
    return {
        "x-signature": compute_signature(secret, timestamp, body),
        "x-timestamp": timestamp,
        "x-idempotency-key": idempotency_key or str(uuid.uuid4()),
    }


@pytest.fixture
def sign_headers():
    """Headers for a correctly signed delivery: sign_headers(secret, body, timestamp=None, idempotency_key=None)."""
    return _sign_headers


@pytest.fixture
def signed_post(client, webhook_secret):
    """POST a signed JSON payload to the ingest route."""

    def _post(
        payload: Any,
        idempotency_key: Optional[str] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        headers = _sign_headers(webhook_secret, body, idempotency_key=idempotency_key)
        headers["content-type"] = "application/json"
        headers.update(extra_headers or {})
        return client.post("/webhooks/events", content=body, headers=headers)

    return _post


@pytest.fixture
def set_env(monkeypatch):
    """Set environment variables and drop the cached settings."""
    from services.ingest.app.core.config import get_settings

    def _set(**values: str) -> None:
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()

    return _set
