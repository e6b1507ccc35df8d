from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base

IDENTITY_KIND_USER = "user"
IDENTITY_KIND_PLACEHOLDER = "placeholder"


class Identity(Base):
    __tablename__ = "identities"
    __table_args__ = (Index("ix_identities_kind", "kind"),)

    # UUID text so partner-supplied user ids can be referenced directly
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(
        String(16), nullable=False, default=IDENTITY_KIND_USER
    )  # user|placeholder
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
