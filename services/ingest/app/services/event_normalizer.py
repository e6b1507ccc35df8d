"""
Event name normalization.

A partner's event name is first attributed to a source system, then sent to
the standardization collaborator for its canonical name. Normalization never
blocks ingestion: if the collaborator is down or says no, the raw name is kept.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.logging import get_logger
from ..core.metrics import event_normalization_degraded_total
from .event_store import CanonicalEvent
from .standardizer import Standardizer

logger = get_logger(__name__)

RESERVED_METADATA_KEYS = frozenset({"original_event_name", "unresolved_actor_id"})
# event_logs.contest_id is VARCHAR(64)
MAX_CONTEST_ID_LENGTH = 64


@dataclass(frozen=True)
class EventTaxonomy:
    """Versioned table of partner-specific event names used for source inference."""

    version: str
    partners: Mapping[str, frozenset[str]] = field(default_factory=dict)
    platform_source: str = "platform"
    test_source: str = "manual_test"

    def partner_for(self, event_name: str) -> str | None:
        for partner, names in self.partners.items():
            if event_name in names:
                return partner
        return None


DEFAULT_TAXONOMY = EventTaxonomy(
    version="2024.1",
    partners={
        "onemill": frozenset(
            {
                "user_registered",
                "voucher_purchased",
                "coin_redeemed",
                "contest_closed",
                "prize_won",
                "notification_sent",
            }
        ),
    },
)


@dataclass(frozen=True)
class NormalizedEvent:
    project_id: str
    original_event_name: str
    event_name: str
    source_system: str
    was_mapped: bool
    degraded: bool = False


class EventNormalizer:
    def __init__(self, standardizer: Standardizer, taxonomy: EventTaxonomy = DEFAULT_TAXONOMY) -> None:
        self._standardizer = standardizer
        self.taxonomy = taxonomy

    def resolve_source(
        self, event_name: str, source_system: str | None = None, test_mode: bool = False
    ) -> str:
        if test_mode:
            return self.taxonomy.test_source
        if source_system:
            return source_system
        return self.taxonomy.partner_for(event_name) or self.taxonomy.platform_source

    def normalize(
        self,
        project_id: str,
        event_name: str,
        source_system: str | None = None,
        test_mode: bool = False,
    ) -> NormalizedEvent:
        source = self.resolve_source(event_name, source_system, test_mode)

        try:
            result = self._standardizer.standardize(source, event_name, project_id)
        except Exception as exc:  # noqa: BLE001 - any collaborator failure degrades
            logger.warning(
                "normalizer.standardize_failed",
                source_system=source,
                event_name=event_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return self._degraded(project_id, event_name, source)

        if not result.success or not result.standardized_event:
            logger.warning(
                "normalizer.standardize_unsuccessful",
                source_system=source,
                event_name=event_name,
            )
            return self._degraded(project_id, event_name, source)

        if result.standardized_event != event_name:
            logger.info(
                "normalizer.event_standardized",
                original=event_name,
                standardized=result.standardized_event,
                was_mapped=result.was_mapped,
            )
        return NormalizedEvent(
            project_id=project_id,
            original_event_name=event_name,
            event_name=result.standardized_event,
            source_system=source,
            was_mapped=result.was_mapped,
        )

    def _degraded(self, project_id: str, event_name: str, source: str) -> NormalizedEvent:
        event_normalization_degraded_total.inc()
        return NormalizedEvent(
            project_id=project_id,
            original_event_name=event_name,
            event_name=event_name,
            source_system=source,
            was_mapped=False,
            degraded=True,
        )


def build_canonical_event(
    normalized: NormalizedEvent,
    metadata: Mapping[str, Any] | None = None,
    actor_id: str | None = None,
) -> CanonicalEvent:
    """Assemble the event handed to the fan-out writer.

    The pre-mapping name is kept in metadata whenever it differs from the
    canonical one. Provenance keys are only ever set by the pipeline, so any
    the caller sent are dropped. ``contest_id`` is lifted into its own column
    only when it fits; otherwise it stays in metadata alone.
    """
    meta = {k: v for k, v in (metadata or {}).items() if k not in RESERVED_METADATA_KEYS}
    original = None
    if normalized.original_event_name != normalized.event_name:
        original = normalized.original_event_name
        meta["original_event_name"] = original
    contest_id = meta.get("contest_id")
    if contest_id is not None:
        contest_id = str(contest_id)
        if len(contest_id) > MAX_CONTEST_ID_LENGTH:
            logger.info("normalizer.contest_id_not_lifted", length=len(contest_id))
            contest_id = None
    return CanonicalEvent(
        project_id=normalized.project_id,
        event_name=normalized.event_name,
        source_system=normalized.source_system,
        metadata=meta,
        original_event_name=original,
        contest_id=contest_id,
        actor_id=actor_id,
    )
