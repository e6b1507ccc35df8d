"""
Operator diagnostics.

These routes replace the old ``X-Test-Ping`` header that skipped webhook
authentication entirely. They are off unless DIAGNOSTICS_ENABLED is set, need
an operator JWT, and are rate limited per client IP.
"""
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request

from ....core.config import get_settings
from ....core.limiter import limiter
from ....core.logging import get_logger
from ....schemas.events import DiagnosticEventIn, IngestResponse
from ....services.event_normalizer import EventNormalizer, build_canonical_event
from ....services.event_writer import ClientInfo, EventFanoutWriter
from ....utils.client_ip import client_ip
from ...deps import (
    get_current_operator,
    get_event_normalizer,
    get_fanout_writer,
    require_diagnostics_enabled,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/diagnostics",
    tags=["diagnostics"],
    dependencies=[Depends(require_diagnostics_enabled)],
)


def _diagnostics_limit() -> str:
    return get_settings().diagnostics_rate_limit


@router.post("/ping")
@limiter.limit(_diagnostics_limit)
def ping(request: Request, operator: dict = Depends(get_current_operator)) -> dict:
    """Static liveness answer for partner connectivity checks; touches no store."""
    settings = get_settings()
    logger.info("diagnostics.ping", operator=operator.get("sub"))
    return {
        "success": True,
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "checked_at": datetime.now(UTC).isoformat(),
    }


@router.post("/test-event", response_model=IngestResponse)
@limiter.limit(_diagnostics_limit)
def test_event(
    request: Request,
    payload: DiagnosticEventIn,
    operator: dict = Depends(get_current_operator),
    normalizer: EventNormalizer = Depends(get_event_normalizer),
    writer: EventFanoutWriter = Depends(get_fanout_writer),
) -> IngestResponse:
    """Run an event through normalization and fan-out under the manual_test source."""
    normalized = normalizer.normalize(payload.project_id, payload.event_name, test_mode=True)
    metadata = {**(payload.metadata or {}), "test": True, "requested_by": operator.get("sub")}
    event = build_canonical_event(normalized, metadata, actor_id=payload.user_id)
    result = writer.write(
        event,
        ClientInfo(ip_address=client_ip(request), user_agent=request.headers.get("user-agent")),
        was_mapped=normalized.was_mapped,
    )
    logger.info(
        "diagnostics.test_event",
        operator=operator.get("sub"),
        event_log_id=result.event_log_id,
    )
    return IngestResponse(
        standardized_event=normalized.event_name,
        was_mapped=normalized.was_mapped,
        source_system=normalized.source_system,
        event_log_id=result.event_log_id,
        derived_request_id=result.derived_request_id,
        audit_log_id=result.audit_log_id,
    )
