"""Initial schema: availability_windows, schedule_closures, bookings, provider_schedule_locks.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_STATE_VALUES = (
    "scheduled_pending",
    "scheduled_payment_failed",
    "confirmed_paid",
    "confirmed_waived",
    "in_progress_paid",
    "in_progress_waived",
)


def upgrade() -> None:
    op.create_table(
        "availability_windows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_windows_day"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_windows_order"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_windows_provider_id"), "availability_windows", ["provider_id"], unique=False)

    op.create_table(
        "schedule_closures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("closed_on", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_schedule_closures_provider_id"), "schedule_closures", ["provider_id"], unique=False)
    op.create_index(op.f("ix_schedule_closures_closed_on"), "schedule_closures", ["closed_on"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("chief_complaint", sa.String(), nullable=True),
        sa.Column("symptoms_description", sa.String(), nullable=True),
        sa.Column("idempotency_token", sa.String(), nullable=False),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("cancelled_by_role", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("scheduled_start < scheduled_end", name="ck_bookings_interval"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookings_patient_id"), "bookings", ["patient_id"], unique=False)
    op.create_index(op.f("ix_bookings_provider_id"), "bookings", ["provider_id"], unique=False)
    op.create_index(op.f("ix_bookings_state"), "bookings", ["state"], unique=False)
    op.create_index(op.f("ix_bookings_idempotency_token"), "bookings", ["idempotency_token"], unique=True)
    op.create_index(op.f("ix_bookings_payment_reference"), "bookings", ["payment_reference"], unique=False)
    op.create_index("ix_bookings_provider_start", "bookings", ["provider_id", "scheduled_start"], unique=False)

    op.create_table(
        "provider_schedule_locks",
        sa.Column("provider_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("provider_id"),
    )

    if op.get_bind().dialect.name == "postgresql":
        # No two active bookings of a provider may overlap (half-open ranges)
        active = ", ".join(f"'{v}'" for v in ACTIVE_STATE_VALUES)
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT ex_bookings_provider_no_overlap "
            "EXCLUDE USING gist (provider_id WITH =, "
            "tsrange(scheduled_start, scheduled_end, '[)') WITH &&) "
            f"WHERE (state IN ({active}))"
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_provider_no_overlap")
    op.drop_table("provider_schedule_locks")
    op.drop_index("ix_bookings_provider_start", table_name="bookings")
    op.drop_index(op.f("ix_bookings_payment_reference"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_idempotency_token"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_state"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_provider_id"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_patient_id"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index(op.f("ix_schedule_closures_closed_on"), table_name="schedule_closures")
    op.drop_index(op.f("ix_schedule_closures_provider_id"), table_name="schedule_closures")
    op.drop_table("schedule_closures")
    op.drop_index(op.f("ix_availability_windows_provider_id"), table_name="availability_windows")
    op.drop_table("availability_windows")
