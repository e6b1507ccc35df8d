from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class WebhookRequest(Base):
    """One row per authenticated delivery attempt.

    The unique constraint on (idempotency_key, endpoint) is what detects
    replays; rows are never updated and retention is handled outside the app.
    """

    __tablename__ = "webhook_requests"
    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", "endpoint", name="uix_webhook_requests_key_endpoint"
        ),
        # Rate limiter counts recent rows per endpoint
        Index("ix_webhook_requests_endpoint_received", "endpoint", "received_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(64), nullable=False)
    # timestamp declared by the caller in X-Timestamp
    timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    source_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
