from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_event_types"
down_revision = "0001_ingest_core"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "event_types",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_system", sa.String(length=64), nullable=False),
        sa.Column("original_event", sa.String(length=128), nullable=False),
        sa.Column("standardized_event", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "source_system", "original_event", name="uix_event_types_source_original"
        ),
    )


def downgrade() -> None:
    op.drop_table("event_types")
