from collections.abc import Generator
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from ..core.auth import verify_token
from ..core.config import get_settings
from ..core.logging import get_logger
from ..db import get_sessionmaker
from ..services.event_normalizer import EventNormalizer
from ..services.event_store import EventStore, SqlEventStore
from ..services.event_writer import EventFanoutWriter
from ..services.standardizer import HttpStandardizer, Standardizer, TableStandardizer
from ..services.webhook_guard import RateLimiter, ReplayGuard, WebhookAuthenticator

logger = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def get_db_session() -> Generator[Session, None, None]:
    SessionLocal = get_sessionmaker()
    with SessionLocal() as session:
        yield session


def get_event_store(session: Session = Depends(get_db_session)) -> EventStore:
    return SqlEventStore(session)


def get_standardizer(store: EventStore = Depends(get_event_store)) -> Standardizer:
    settings = get_settings()
    if settings.standardizer_url:
        return HttpStandardizer(settings.standardizer_url, timeout=settings.standardizer_timeout_seconds)
    return TableStandardizer(store)


def get_event_normalizer(
    standardizer: Standardizer = Depends(get_standardizer),
) -> EventNormalizer:
    return EventNormalizer(standardizer)


def get_authenticator(store: EventStore = Depends(get_event_store)) -> WebhookAuthenticator:
    settings = get_settings()
    fail_open = settings.availability_over_strict_security
    return WebhookAuthenticator(
        store,
        secret=settings.webhook_secret,
        timestamp_tolerance=timedelta(seconds=settings.webhook_timestamp_tolerance_seconds),
        rate_limiter=RateLimiter(
            store,
            max_requests=settings.webhook_rate_limit_max_requests,
            window=timedelta(seconds=settings.webhook_rate_limit_window_seconds),
            availability_over_strict_security=fail_open,
        ),
        replay_guard=ReplayGuard(store, availability_over_strict_security=fail_open),
    )


def get_fanout_writer(store: EventStore = Depends(get_event_store)) -> EventFanoutWriter:
    return EventFanoutWriter(store, placeholder_actor_id=get_settings().placeholder_actor_id)


def require_diagnostics_enabled() -> None:
    if not get_settings().diagnostics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency that requires a valid operator JWT.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not credentials:
        logger.warning("auth.missing_credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth.invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
