"""Create reminder_logs table."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "9a3f5d2c6e18"
down_revision = "4b2e9c71d0a5"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reminder_logs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("reminder_type", sa.String(length=32), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
    )
    op.create_index(
        "ix_reminder_logs_company_sent", "reminder_logs", ["company_id", "sent_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_reminder_logs_company_sent", table_name="reminder_logs")
    op.drop_table("reminder_logs")
