import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ....core.config import get_settings
from ....core.logging import get_logger
from ....schemas.events import CanonicalEventIn, IngestResponse
from ....services.event_normalizer import EventNormalizer, build_canonical_event
from ....services.event_writer import ClientInfo, EventFanoutWriter
from ....services.webhook_guard import (
    Denied,
    DenialReason,
    WebhookAuthenticator,
    deny,
)
from ....utils.client_ip import client_ip
from ...deps import get_authenticator, get_event_normalizer, get_fanout_writer

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

EVENTS_ENDPOINT = "events"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": (
        "authorization, content-type, x-signature, x-timestamp, x-idempotency-key"
    ),
}


def _json(status_code: int, content: dict[str, Any]) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


def unauthorized_response() -> JSONResponse:
    """The only shape a denied delivery ever sees, whatever the reason."""
    return _json(401, {"error": "Unauthorized"})


def internal_error_response() -> JSONResponse:
    return _json(500, {"error": "Internal error"})


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    if first.get("type") == "missing":
        return f"Missing required field: {field}"
    return f"Invalid field: {field}"


def _process_event(
    request_headers,
    raw_body: bytes,
    source_ip: str | None,
    authenticator: WebhookAuthenticator,
    normalizer: EventNormalizer,
    writer: EventFanoutWriter,
) -> JSONResponse:
    decision = authenticator.authenticate(request_headers, raw_body, EVENTS_ENDPOINT, source_ip)
    if isinstance(decision, Denied):
        return unauthorized_response()

    try:
        body = json.loads(raw_body)
    except ValueError:
        return _json(400, {"error": "Invalid JSON body"})
    if not isinstance(body, dict):
        return _json(400, {"error": "Request body must be a JSON object"})
    try:
        payload = CanonicalEventIn.model_validate(body)
    except ValidationError as exc:
        message = _describe_validation_error(exc)
        logger.info("webhook.invalid_payload", error=message)
        return _json(400, {"error": message})

    normalized = normalizer.normalize(
        payload.project_id, payload.event_name, source_system=payload.source_system
    )
    event = build_canonical_event(normalized, payload.metadata, actor_id=payload.user_id)
    result = writer.write(
        event,
        ClientInfo(ip_address=source_ip, user_agent=request_headers.get("user-agent")),
        was_mapped=normalized.was_mapped,
    )

    return _json(
        200,
        IngestResponse(
            standardized_event=normalized.event_name,
            was_mapped=normalized.was_mapped,
            source_system=normalized.source_system,
            event_log_id=result.event_log_id,
            derived_request_id=result.derived_request_id,
            audit_log_id=result.audit_log_id,
        ).model_dump(),
    )


@router.api_route(
    "/events",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def ingest_event(
    request: Request,
    authenticator: WebhookAuthenticator = Depends(get_authenticator),
    normalizer: EventNormalizer = Depends(get_event_normalizer),
    writer: EventFanoutWriter = Depends(get_fanout_writer),
) -> Response:
    """
    Signed partner event ingestion.

    Required headers: X-Signature (hex HMAC-SHA256 of ``<timestamp>.<body>``),
    X-Timestamp (ISO-8601) and X-Idempotency-Key. Body:
    ``{project_id, event_name, source_system?, metadata?, user_id?}``.
    """
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=CORS_HEADERS)
    if request.method != "POST":
        deny(DenialReason.METHOD_NOT_ALLOWED, endpoint=EVENTS_ENDPOINT, method=request.method)
        return unauthorized_response()

    if request.headers.get("x-test-ping"):
        # Diagnostics live on /v1/diagnostics; the header grants nothing here
        logger.warning("webhook.test_ping_header_ignored", endpoint=EVENTS_ENDPOINT)

    try:
        raw_body = await request.body()
        if len(raw_body) > get_settings().max_payload_bytes:
            return _json(413, {"error": "Payload too large"})
        return await run_in_threadpool(
            _process_event,
            request.headers,
            raw_body,
            client_ip(request),
            authenticator,
            normalizer,
            writer,
        )
    except Exception as exc:  # noqa: BLE001 - never expose internals to partners
        logger.error(
            "webhook.unhandled_exception",
            endpoint=EVENTS_ENDPOINT,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return internal_error_response()
