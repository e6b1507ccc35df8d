from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_ingest_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhook_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("endpoint", sa.String(length=64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_ip", sa.String(length=64), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("idempotency_key", "endpoint", name="uix_webhook_requests_key_endpoint"),
    )
    op.create_index(
        "ix_webhook_requests_endpoint_received", "webhook_requests", ["endpoint", "received_at"]
    )

    op.create_table(
        "identities",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("kind", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_identities_kind", "identities", ["kind"])

    op.create_table(
        "event_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("actor_id", sa.String(length=64), sa.ForeignKey("identities.id"), nullable=False),
        sa.Column("event_name", sa.String(length=128), nullable=False),
        sa.Column("source_system", sa.String(length=64), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("contest_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_event_logs_project_created", "event_logs", ["project_id", "created_at"])
    op.create_index("ix_event_logs_event_name", "event_logs", ["event_name"])
    op.create_index("ix_event_logs_actor_id", "event_logs", ["actor_id"])

    op.create_table(
        "derived_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("event_log_id", sa.String(length=36), sa.ForeignKey("event_logs.id"), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("prompt", sa.String(length=512), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("event_name", sa.String(length=128), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="completed"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_derived_requests_event_log_id", "derived_requests", ["event_log_id"])
    op.create_index("ix_derived_requests_status", "derived_requests", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("event_name", sa.String(length=128), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_audit_logs_project_created", "audit_logs", ["project_id", "created_at"])
    op.create_index("ix_audit_logs_event_name", "audit_logs", ["event_name"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_event_name", table_name="audit_logs")
    op.drop_index("ix_audit_logs_project_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_derived_requests_status", table_name="derived_requests")
    op.drop_index("ix_derived_requests_event_log_id", table_name="derived_requests")
    op.drop_table("derived_requests")
    op.drop_index("ix_event_logs_actor_id", table_name="event_logs")
    op.drop_index("ix_event_logs_event_name", table_name="event_logs")
    op.drop_index("ix_event_logs_project_created", table_name="event_logs")
    op.drop_table("event_logs")
    op.drop_index("ix_identities_kind", table_name="identities")
    op.drop_table("identities")
    op.drop_index("ix_webhook_requests_endpoint_received", table_name="webhook_requests")
    op.drop_table("webhook_requests")
