"""create admissions tables

Revision ID: b7c8d9e0f1a2
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration:
1. Creates the account_role, course_status and payment_status enum types
2. Creates the accounts table (one row per candidate or staff account)
3. Creates the applied_courses table with the per-account unique
   application id and the version counter used for conditional writes
4. Creates the appointment_slots table keyed by (slot_date, period)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b7c8d9e0f1a2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# SQLAlchemy stores python enums by member name
account_role_enum = postgresql.ENUM(
    "CANDIDATE", "STAFF", "ADMIN", name="account_role", create_type=False
)
course_status_enum = postgresql.ENUM(
    "PENDING",
    "APPOINTMENT_BOOKED",
    "VERIFIED",
    "REJECTED",
    "REFILL_REQUIRED",
    name="course_status",
    create_type=False,
)
payment_status_enum = postgresql.ENUM("PENDING", "PAID", name="payment_status", create_type=False)


def upgrade() -> None:
    """Create accounts, applied_courses and appointment_slots."""
    bind = op.get_bind()
    account_role_enum.create(bind, checkfirst=True)
    course_status_enum.create(bind, checkfirst=True)
    payment_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", account_role_enum, nullable=False),
        sa.Column("permissions", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        # Candidate profile
        sa.Column("profile", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("profile_locked", sa.Boolean(), nullable=False),
        sa.Column("profile_completion", sa.Integer(), nullable=False),
        sa.Column("declaration_accepted", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "applied_courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("application_id", sa.String(length=100), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        # Course
        sa.Column("course_type", sa.String(length=100), nullable=True),
        sa.Column("course_category", sa.String(length=200), nullable=False),
        sa.Column("course_year", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        # Lifecycle
        sa.Column("status", course_status_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, nullable=False),
        sa.Column("payment_reference", sa.String(length=100), nullable=True),
        sa.Column("payment_order_ref", sa.String(length=100), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=True),
        sa.Column("appointment_slot", sa.String(length=50), nullable=True),
        sa.Column("documents", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        # Review
        sa.Column("reviewed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "account_id", "application_id", name="uq_applied_courses_application_id"
        ),
    )
    op.create_index(
        "ix_applied_courses_account_id", "applied_courses", ["account_id"], unique=False
    )
    op.create_index("ix_applied_courses_status", "applied_courses", ["status"], unique=False)

    op.create_table(
        "appointment_slots",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("period", sa.String(length=50), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slot_date", "period", name="uq_appointment_slots_key"),
    )


def downgrade() -> None:
    """Drop the admissions tables and their enum types."""
    op.drop_table("appointment_slots")
    op.drop_index("ix_applied_courses_status", table_name="applied_courses")
    op.drop_index("ix_applied_courses_account_id", table_name="applied_courses")
    op.drop_table("applied_courses")
    op.drop_table("accounts")

    bind = op.get_bind()
    payment_status_enum.drop(bind, checkfirst=True)
    course_status_enum.drop(bind, checkfirst=True)
    account_role_enum.drop(bind, checkfirst=True)
