"""
Webhook authentication: one allow/deny decision per delivery.

Checks run cheapest first so trivially invalid requests never touch the
database:

1. required headers present, idempotency key fits its column
2. X-Timestamp within the freshness window
3. HMAC signature (CPU only)
4. per-endpoint rate limit (store read)
5. replay guard (store write; records this delivery attempt)

Every failure becomes ``Denied(reason)``. The reason is for logs and metrics
only; the HTTP layer renders all denials identically.
"""
from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from ..core.logging import get_logger
from ..core.metrics import webhook_auth_denied_total
from ..core.signatures import is_timestamp_fresh, parse_timestamp, verify_signature
from .event_store import DuplicateRecordError, EventStore, StoreError

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"
IDEMPOTENCY_HEADER = "x-idempotency-key"
REQUIRED_HEADERS = (SIGNATURE_HEADER, TIMESTAMP_HEADER, IDEMPOTENCY_HEADER)
# webhook_requests.idempotency_key is VARCHAR(255)
MAX_IDEMPOTENCY_KEY_LENGTH = 255


class DenialReason(str, enum.Enum):
    METHOD_NOT_ALLOWED = "method_not_allowed"
    NOT_CONFIGURED = "not_configured"
    MISSING_HEADERS = "missing_headers"
    INVALID_IDEMPOTENCY_KEY = "invalid_idempotency_key"
    STALE_TIMESTAMP = "stale_timestamp"
    BAD_SIGNATURE = "bad_signature"
    RATE_LIMITED = "rate_limited"
    REPLAY = "replay"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class Allowed:
    idempotency_key: str
    timestamp: datetime


@dataclass(frozen=True)
class Denied:
    reason: DenialReason


AuthDecision = Allowed | Denied


def deny(reason: DenialReason, **context) -> Denied:
    webhook_auth_denied_total.labels(reason=reason.value).inc()
    logger.warning("webhook.auth_denied", reason=reason.value, **context)
    return Denied(reason)


class ReplayGuard:
    """Detects duplicate deliveries by inserting the idempotency key.

    The unique constraint on (idempotency_key, endpoint) is atomic at the
    database, so two handler processes racing on the same key cannot both win.
    """

    def __init__(self, store: EventStore, availability_over_strict_security: bool = True) -> None:
        self._store = store
        self._fail_open = availability_over_strict_security

    def is_replay(
        self,
        idempotency_key: str,
        endpoint: str,
        timestamp: datetime | None,
        source_ip: str | None = None,
    ) -> bool:
        try:
            self._store.record_webhook_request(idempotency_key, endpoint, timestamp, source_ip)
        except DuplicateRecordError:
            return True
        except (StoreError, SQLAlchemyError) as exc:
            logger.error(
                "webhook.replay_check_failed",
                endpoint=endpoint,
                fail_open=self._fail_open,
                error=str(exc),
            )
            if not self._fail_open:
                raise
            return False
        return False


class RateLimiter:
    """Counting-query limiter over recorded deliveries.

    Count-then-compare is not atomic: N requests arriving together near the
    threshold can all observe ``max_requests - 1`` and be admitted, overshooting
    by up to N - 1. Only the replay guard is a strict primitive.
    """

    def __init__(
        self,
        store: EventStore,
        max_requests: int = 60,
        window: timedelta = timedelta(seconds=60),
        availability_over_strict_security: bool = True,
    ) -> None:
        self._store = store
        self.max_requests = max_requests
        self.window = window
        self._fail_open = availability_over_strict_security

    def is_limited(self, endpoint: str, now: datetime | None = None) -> bool:
        since = (now or datetime.now(UTC)) - self.window
        try:
            count = self._store.count_recent_requests(endpoint, since)
        except (StoreError, SQLAlchemyError) as exc:
            logger.error(
                "webhook.rate_limit_check_failed",
                endpoint=endpoint,
                fail_open=self._fail_open,
                error=str(exc),
            )
            if not self._fail_open:
                raise
            return False
        if count >= self.max_requests:
            logger.warning(
                "webhook.rate_limited", endpoint=endpoint, count=count, limit=self.max_requests
            )
            return True
        return False


class WebhookAuthenticator:
    def __init__(
        self,
        store: EventStore,
        secret: str | None,
        timestamp_tolerance: timedelta = timedelta(minutes=5),
        rate_limiter: RateLimiter | None = None,
        replay_guard: ReplayGuard | None = None,
        availability_over_strict_security: bool = True,
    ) -> None:
        self._secret = secret
        self._tolerance = timestamp_tolerance
        self._rate_limiter = rate_limiter or RateLimiter(
            store, availability_over_strict_security=availability_over_strict_security
        )
        self._replay_guard = replay_guard or ReplayGuard(
            store, availability_over_strict_security=availability_over_strict_security
        )

    def authenticate(
        self,
        headers: Mapping[str, str],
        raw_body: bytes,
        endpoint: str,
        source_ip: str | None = None,
        now: datetime | None = None,
    ) -> AuthDecision:
        signature = (headers.get(SIGNATURE_HEADER) or "").strip()
        timestamp = (headers.get(TIMESTAMP_HEADER) or "").strip()
        idempotency_key = (headers.get(IDEMPOTENCY_HEADER) or "").strip()

        if not signature or not timestamp or not idempotency_key:
            return deny(
                DenialReason.MISSING_HEADERS,
                endpoint=endpoint,
                has_signature=bool(signature),
                has_timestamp=bool(timestamp),
                has_idempotency_key=bool(idempotency_key),
            )

        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            return deny(
                DenialReason.INVALID_IDEMPOTENCY_KEY,
                endpoint=endpoint,
                key_length=len(idempotency_key),
            )

        current = now or datetime.now(UTC)
        if not is_timestamp_fresh(timestamp, self._tolerance, current):
            return deny(DenialReason.STALE_TIMESTAMP, endpoint=endpoint, timestamp=timestamp)
        declared = parse_timestamp(timestamp)

        if not self._secret:
            return deny(DenialReason.NOT_CONFIGURED, endpoint=endpoint)

        if not verify_signature(raw_body, timestamp, signature, self._secret):
            return deny(
                DenialReason.BAD_SIGNATURE,
                endpoint=endpoint,
                signature_length=len(signature),
                body_length=len(raw_body),
            )

        try:
            if self._rate_limiter.is_limited(endpoint, now=current):
                return deny(DenialReason.RATE_LIMITED, endpoint=endpoint)
            if self._replay_guard.is_replay(idempotency_key, endpoint, declared, source_ip):
                return deny(
                    DenialReason.REPLAY, endpoint=endpoint, idempotency_key=idempotency_key
                )
        except (StoreError, SQLAlchemyError):
            # only reached when availability_over_strict_security is off
            return deny(DenialReason.STORE_UNAVAILABLE, endpoint=endpoint)

        return Allowed(idempotency_key=idempotency_key, timestamp=declared)
