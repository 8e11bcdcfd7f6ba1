"""Create eligibility, compliance tracking, authorisation, and sweep lease tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4b2e9c71d0a5"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "eligibility_checks",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("round_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("scheme", sa.String(length=8), nullable=False),
        sa.Column("result", sa.String(length=16), nullable=False),
        sa.Column("reasons", JSON_TYPE, nullable=False),
        sa.Column("checks_performed", JSON_TYPE, nullable=False),
        sa.Column("performed_by", sa.String(length=255), nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
    )
    op.create_index("ix_eligibility_checks_round_id", "eligibility_checks", ["round_id"])
    op.create_index("ix_eligibility_checks_company_id", "eligibility_checks", ["company_id"])

    op.create_table(
        "compliance_tracking",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("round_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("share_issue_date", sa.Date(), nullable=True),
        sa.Column("next_reminder_due", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seis1_eis1_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.UniqueConstraint("company_id", "round_id", name="uq_compliance_company_round"),
    )
    op.create_index(
        "ix_compliance_next_reminder_due", "compliance_tracking", ["next_reminder_due"]
    )

    op.create_table(
        "authorisations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
    )
    op.create_index(
        "ix_authorisations_valid_expiry", "authorisations", ["is_valid", "expires_at"]
    )

    op.create_table(
        "sweep_leases",
        sa.Column("name", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("holder", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("sweep_leases")
    op.drop_index("ix_authorisations_valid_expiry", table_name="authorisations")
    op.drop_table("authorisations")
    op.drop_index("ix_compliance_next_reminder_due", table_name="compliance_tracking")
    op.drop_table("compliance_tracking")
    op.drop_index("ix_eligibility_checks_company_id", table_name="eligibility_checks")
    op.drop_index("ix_eligibility_checks_round_id", table_name="eligibility_checks")
    op.drop_table("eligibility_checks")
