from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class EventType(Base):
    """Mapping from a partner's event name to the canonical vocabulary."""

    __tablename__ = "event_types"
    __table_args__ = (
        UniqueConstraint(
            "source_system", "original_event", name="uix_event_types_source_original"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(String(64), nullable=False)
    original_event: Mapped[str] = mapped_column(String(128), nullable=False)
    standardized_event: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
