"""
Webhook signature and freshness checks.

Partners sign ``<X-Timestamp>.<raw body>`` with HMAC-SHA256 using the shared
webhook secret and send the hex digest in ``X-Signature``. Both checks are pure
functions with no store access so the authenticator can run them before any
database I/O.
"""
import base64
import binascii
import hashlib
import hmac
import re
from datetime import UTC, datetime, timedelta

from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMESTAMP_WINDOW = timedelta(minutes=5)

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")
_EPOCH = re.compile(r"^\d{9,11}$")


def signed_payload(timestamp: str, raw_body: bytes) -> bytes:
    return timestamp.encode("utf-8") + b"." + raw_body


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    mac = hmac.new(
        secret.encode("utf-8"),
        msg=signed_payload(timestamp, raw_body),
        digestmod=hashlib.sha256,
    )
    return mac.hexdigest()


def verify_signature(raw_body: bytes, timestamp: str, signature: str, secret: str) -> bool:
    """Return True when ``signature`` matches the HMAC of timestamp and body.

    Accepts the lowercase hex digest (optionally prefixed with ``sha256=``) or
    its base64 rendering. The comparison is constant time over equal-length
    values and returns False straight away on a length mismatch. Never raises.
    """
    if not secret or not signature:
        return False
    try:
        mac = hmac.new(
            secret.encode("utf-8"),
            msg=signed_payload(timestamp, raw_body),
            digestmod=hashlib.sha256,
        )
        incoming = signature.strip()
        if incoming[:7].lower() == "sha256=":
            incoming = incoming[7:]

        if _HEX_DIGEST.match(incoming.lower()):
            return hmac.compare_digest(mac.hexdigest().encode("ascii"), incoming.lower().encode("ascii"))
        expected_b64 = base64.b64encode(mac.digest())
        return hmac.compare_digest(expected_b64, incoming.encode("utf-8"))
    except (UnicodeError, ValueError, TypeError, binascii.Error) as exc:
        logger.warning("signature.verify_error", error_type=type(exc).__name__)
        return False


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 (or Unix epoch seconds) timestamp into an aware datetime."""
    if not value:
        return None
    raw = value.strip()
    try:
        if _EPOCH.match(raw):
            return datetime.fromtimestamp(int(raw), tz=UTC)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def is_timestamp_fresh(
    value: str | None,
    window: timedelta = DEFAULT_TIMESTAMP_WINDOW,
    now: datetime | None = None,
) -> bool:
    """True when the declared timestamp is within ``window`` of now, either side.

    Unparseable timestamps fail closed.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return False
    current = now or datetime.now(UTC)
    return abs(current - parsed) <= window
