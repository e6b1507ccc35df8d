from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx

from ..core.logging import get_logger
from .event_store import EventStore

logger = get_logger(__name__)


class StandardizerError(Exception):
    """The standardization collaborator could not produce an answer."""


@dataclass(frozen=True)
class StandardizationResult:
    standardized_event: str
    was_mapped: bool
    success: bool


class Standardizer(Protocol):
    def standardize(
        self, source_system: str, original_event: str, project_id: str | None
    ) -> StandardizationResult: ...


class HttpStandardizer:
    """Calls a remote mapping service over HTTP."""

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        self._url = base_url.rstrip("/")
        self._timeout = timeout

    def standardize(
        self, source_system: str, original_event: str, project_id: str | None
    ) -> StandardizationResult:
        payload = {
            "source_system": source_system,
            "original_event": original_event,
            "project_id": project_id,
        }
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.post(self._url, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StandardizerError(f"standardizer request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise StandardizerError("standardizer returned a non-object body")
        return StandardizationResult(
            standardized_event=str(data.get("standardized_event") or ""),
            was_mapped=bool(data.get("was_mapped")),
            success=bool(data.get("success")),
        )


class TableStandardizer:
    """Resolves names from the event_types mapping table.

    Unmapped names come back unchanged with ``was_mapped=False`` and are noted
    in the audit log so operators can add a mapping.
    """

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def standardize(
        self, source_system: str, original_event: str, project_id: str | None
    ) -> StandardizationResult:
        mapping = self._store.lookup_event_type(source_system, original_event)
        if mapping is not None:
            logger.info(
                "standardizer.mapped",
                source_system=source_system,
                original=original_event,
                standardized=mapping.standardized_event,
            )
            return StandardizationResult(
                standardized_event=mapping.standardized_event, was_mapped=True, success=True
            )

        logger.warning(
            "standardizer.unmapped_event",
            source_system=source_system,
            original_event=original_event,
        )
        try:
            self._store.insert_audit_entry(
                event_name="unmapped_event_detected",
                project_id=project_id,
                event_data={
                    "source_system": source_system,
                    "original_event": original_event,
                    "timestamp": datetime.now(UTC).isoformat(),
                    "severity": "info",
                },
            )
        except Exception as exc:  # noqa: BLE001 - audit is advisory
            logger.error("standardizer.unmapped_audit_failed", error=str(exc))

        return StandardizationResult(
            standardized_event=original_event, was_mapped=False, success=True
        )
