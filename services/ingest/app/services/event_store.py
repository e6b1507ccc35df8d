"""
Persistence boundary for the ingest pipeline.

Every cross-request guarantee (replay detection, placeholder creation) rests on
the database's constraints, so the store's main job is to translate integrity
errors into the two cases callers act on. Anything else propagates unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.logging import get_logger
from ..models.event_types import EventType
from ..models.events import AuditLog, DerivedRequest, EventLog
from ..models.identities import IDENTITY_KIND_PLACEHOLDER, Identity
from ..models.webhook_requests import WebhookRequest

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

# source_ip and ip_address columns are VARCHAR(64)
MAX_IP_LENGTH = 64


class StoreError(Exception):
    """Base class for classified store failures."""


class DuplicateRecordError(StoreError):
    """A unique constraint rejected the insert."""


class MissingActorError(StoreError):
    """An event referenced an actor identity that does not exist."""


@dataclass(frozen=True)
class CanonicalEvent:
    project_id: str
    event_name: str
    source_system: str
    metadata: dict[str, Any] = field(default_factory=dict)
    original_event_name: str | None = None
    contest_id: str | None = None
    actor_id: str | None = None


class EventStore(Protocol):
    def record_webhook_request(
        self,
        idempotency_key: str,
        endpoint: str,
        timestamp: datetime | None,
        source_ip: str | None,
    ) -> None: ...

    def count_recent_requests(self, endpoint: str, since: datetime) -> int: ...

    def insert_event_log(self, event: CanonicalEvent, actor_id: str) -> str: ...

    def ensure_placeholder_identity(self, actor_id: str) -> bool: ...

    def insert_derived_request(
        self, event_log_id: str, event: CanonicalEvent, actor_id: str
    ) -> str: ...

    def insert_audit_entry(
        self,
        event_name: str,
        event_data: dict[str, Any],
        project_id: str | None = None,
        actor_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str: ...

    def lookup_event_type(self, source_system: str, original_event: str) -> EventType | None: ...


def _sqlstate(exc: IntegrityError) -> str | None:
    orig = exc.orig
    # psycopg 3 exposes sqlstate, psycopg2 pgcode
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_integrity_error(exc: IntegrityError) -> StoreError | None:
    code = _sqlstate(exc)
    message = str(exc.orig).lower()
    if code == UNIQUE_VIOLATION or "unique constraint" in message or "duplicate key" in message:
        return DuplicateRecordError(str(exc.orig))
    if code == FOREIGN_KEY_VIOLATION or "foreign key constraint" in message:
        return MissingActorError(str(exc.orig))
    return None


class SqlEventStore:
    """EventStore over a SQLAlchemy session; each write commits on its own."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def _commit(self, row) -> None:  # noqa: ANN001
        self._session.add(row)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            classified = classify_integrity_error(exc)
            if classified is not None:
                raise classified from exc
            raise
        except Exception:
            self._session.rollback()
            raise

    def record_webhook_request(
        self,
        idempotency_key: str,
        endpoint: str,
        timestamp: datetime | None,
        source_ip: str | None,
    ) -> None:
        self._commit(
            WebhookRequest(
                idempotency_key=idempotency_key,
                endpoint=endpoint,
                timestamp=timestamp,
                source_ip=source_ip[:MAX_IP_LENGTH] if source_ip else None,
            )
        )

    def _scalar(self, stmt):  # noqa: ANN001
        try:
            return self._session.execute(stmt).scalar_one_or_none()
        except Exception:
            # leave the session usable for the writes that follow
            self._session.rollback()
            raise

    def count_recent_requests(self, endpoint: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(WebhookRequest)
            .where(WebhookRequest.endpoint == endpoint, WebhookRequest.received_at >= since)
        )
        return int(self._scalar(stmt) or 0)

    def insert_event_log(self, event: CanonicalEvent, actor_id: str) -> str:
        row = EventLog(
            project_id=event.project_id,
            actor_id=actor_id,
            event_name=event.event_name,
            source_system=event.source_system,
            event_metadata=dict(event.metadata),
            contest_id=event.contest_id,
        )
        self._commit(row)
        return row.id

    def ensure_placeholder_identity(self, actor_id: str) -> bool:
        """Insert the placeholder identity if absent. Returns True when this call created it.

        Concurrent callers race on the primary key; the loser's insert is a no-op.
        """
        values = {
            "id": actor_id,
            "kind": IDENTITY_KIND_PLACEHOLDER,
            "display_name": "Unattributed events",
        }
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(Identity).values(**values).on_conflict_do_nothing(
                index_elements=[Identity.id]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(Identity).values(**values).on_conflict_do_nothing(
                index_elements=[Identity.id]
            )
        else:
            if self._session.get(Identity, actor_id) is not None:
                return False
            try:
                self._commit(Identity(**values))
            except DuplicateRecordError:
                return False
            return True

        try:
            result = self._session.execute(stmt)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        created = bool(result.rowcount)
        if created:
            logger.info("store.placeholder_identity_created", actor_id=actor_id)
        return created

    def insert_derived_request(
        self, event_log_id: str, event: CanonicalEvent, actor_id: str
    ) -> str:
        row = DerivedRequest(
            event_log_id=event_log_id,
            type="event_integration",
            prompt=f"Inbound event: {event.event_name}"[:512],
            project_id=event.project_id,
            event_name=event.event_name,
            request_metadata=dict(event.metadata),
            actor_id=actor_id,
            status="completed",
        )
        self._commit(row)
        return row.id

    def insert_audit_entry(
        self,
        event_name: str,
        event_data: dict[str, Any],
        project_id: str | None = None,
        actor_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        row = AuditLog(
            event_name=event_name,
            event_data=event_data,
            project_id=project_id,
            actor_id=actor_id,
            ip_address=ip_address[:MAX_IP_LENGTH] if ip_address else None,
            user_agent=user_agent[:512] if user_agent else None,
        )
        self._commit(row)
        return row.id

    def lookup_event_type(self, source_system: str, original_event: str) -> EventType | None:
        return self._scalar(
            select(EventType).where(
                EventType.source_system == source_system,
                EventType.original_event == original_event,
            )
        )
