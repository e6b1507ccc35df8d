"""
Fan-out of a canonical event to its sinks.

    RECEIVED -> PERSIST_PRIMARY -> SUCCESS -> PERSIST_SECONDARY -> DONE
                               |-> FK_MISSING -> SELF_HEAL -> RETRY_PRIMARY

The event log is the only sink whose failure fails the request. The self-heal
path retries the primary write exactly once; a second failure is surfaced so
the partner retries the delivery instead of the outage being masked.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from ..core.logging import get_logger
from ..core.metrics import (
    fanout_secondary_failures_total,
    fanout_self_heal_total,
    webhook_events_ingested_total,
)
from .event_store import CanonicalEvent, EventStore, MissingActorError

logger = get_logger(__name__)


class EventPersistenceError(Exception):
    """The primary event log write failed, after self-heal where applicable."""


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class FanoutResult:
    event_log_id: str
    actor_id: str
    derived_request_id: str | None = None
    audit_log_id: str | None = None
    self_healed: bool = False


class EventFanoutWriter:
    def __init__(self, store: EventStore, placeholder_actor_id: str) -> None:
        self._store = store
        self._placeholder = placeholder_actor_id

    def write(
        self,
        event: CanonicalEvent,
        client: ClientInfo | None = None,
        was_mapped: bool = False,
    ) -> FanoutResult:
        client = client or ClientInfo()
        event, actor_id, event_log_id, healed = self._persist_primary(event)

        webhook_events_ingested_total.labels(
            source_system=event.source_system, mapped=str(was_mapped).lower()
        ).inc()

        derived_id = self._best_effort(
            "derived_request",
            lambda: self._store.insert_derived_request(event_log_id, event, actor_id),
            event_log_id,
        )
        audit_id = self._best_effort(
            "audit_log",
            lambda: self._store.insert_audit_entry(
                event_name=event.event_name,
                event_data=self._audit_data(event, was_mapped),
                project_id=event.project_id,
                actor_id=actor_id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            ),
            event_log_id,
        )

        logger.info(
            "fanout.completed",
            event_log_id=event_log_id,
            derived_request_id=derived_id,
            audit_log_id=audit_id,
            self_healed=healed,
        )
        return FanoutResult(
            event_log_id=event_log_id,
            actor_id=actor_id,
            derived_request_id=derived_id,
            audit_log_id=audit_id,
            self_healed=healed,
        )

    def _persist_primary(self, event: CanonicalEvent) -> tuple[CanonicalEvent, str, str, bool]:
        actor_id = event.actor_id or self._placeholder
        try:
            return event, actor_id, self._store.insert_event_log(event, actor_id), False
        except MissingActorError:
            logger.warning("fanout.actor_missing", actor_id=actor_id, project_id=event.project_id)
        except Exception as exc:
            logger.error("fanout.primary_failed", error=str(exc), exc_info=True)
            raise EventPersistenceError("event log write failed") from exc

        # self-heal: make sure the placeholder exists, then retry once
        fanout_self_heal_total.inc()
        try:
            created = self._store.ensure_placeholder_identity(self._placeholder)
            if actor_id != self._placeholder:
                event = replace(
                    event,
                    metadata={**event.metadata, "unresolved_actor_id": actor_id},
                )
                actor_id = self._placeholder
            logger.info(
                "fanout.self_heal", placeholder_created=created, actor_id=actor_id
            )
            event_log_id = self._store.insert_event_log(event, actor_id)
        except Exception as exc:
            logger.error("fanout.primary_retry_failed", error=str(exc), exc_info=True)
            raise EventPersistenceError("event log write failed after self-heal") from exc
        return event, actor_id, event_log_id, True

    def _best_effort(self, sink: str, write, event_log_id: str) -> str | None:  # noqa: ANN001
        try:
            return write()
        except Exception as exc:  # noqa: BLE001 - secondary sinks are advisory
            fanout_secondary_failures_total.labels(sink=sink).inc()
            logger.error(
                "fanout.secondary_failed",
                sink=sink,
                event_log_id=event_log_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    @staticmethod
    def _audit_data(event: CanonicalEvent, was_mapped: bool) -> dict[str, Any]:
        data = dict(event.metadata)
        data["source_system"] = event.source_system
        data["was_mapped"] = was_mapped
        if event.original_event_name:
            data["original_event_name"] = event.original_event_name
        return data
