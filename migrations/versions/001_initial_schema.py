"""Initial schema: users, providers, provider_services, working_days, blocked_dates, bookings, booking_reschedules.

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

_ACTIVE_SLOT_WHERE = sa.text("status IN ('pending', 'confirmed')")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="customer"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("otp_code", sa.String(), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_phone"), "users", ["phone"], unique=True)
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)

    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("business_name", sa.String(), nullable=False),
        sa.Column("bio", sa.String(), nullable=True),
        sa.Column("street", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("zip_code", sa.String(), nullable=False),
        sa.Column("country", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("rating_average", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_providers_user_id"), "providers", ["user_id"], unique=True)
    op.create_index(op.f("ix_providers_business_name"), "providers", ["business_name"], unique=False)
    op.create_index(op.f("ix_providers_city"), "providers", ["city"], unique=False)
    op.create_index(op.f("ix_providers_state"), "providers", ["state"], unique=False)

    op.create_table(
        "provider_services",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_provider_services_provider_id"), "provider_services", ["provider_id"], unique=False)
    op.create_index(op.f("ix_provider_services_name"), "provider_services", ["name"], unique=False)

    op.create_table(
        "working_days",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.String(), nullable=False),
        sa.Column("start_time", sa.String(), nullable=False),
        sa.Column("end_time", sa.String(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="true"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id", "day", name="uq_working_days_provider_day"),
    )
    op.create_index(op.f("ix_working_days_provider_id"), "working_days", ["provider_id"], unique=False)

    op.create_table(
        "blocked_dates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("blocked_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_blocked_dates_provider_id"), "blocked_dates", ["provider_id"], unique=False)
    op.create_index(op.f("ix_blocked_dates_blocked_date"), "blocked_dates", ["blocked_date"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("service_description", sa.String(), nullable=True),
        sa.Column("service_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("service_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(), nullable=False),
        sa.Column("end_time", sa.String(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("provider_notes", sa.String(), nullable=True),
        sa.Column("payment_intent_id", sa.String(), nullable=True),
        sa.Column("payment_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_currency", sa.String(), nullable=False, server_default="usd"),
        sa.Column("payment_status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_status", sa.String(), nullable=True),
        sa.Column("refund_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookings_customer_id"), "bookings", ["customer_id"], unique=False)
    op.create_index(op.f("ix_bookings_provider_id"), "bookings", ["provider_id"], unique=False)
    op.create_index(op.f("ix_bookings_appointment_date"), "bookings", ["appointment_date"], unique=False)
    op.create_index(op.f("ix_bookings_status"), "bookings", ["status"], unique=False)
    op.create_index(op.f("ix_bookings_payment_intent_id"), "bookings", ["payment_intent_id"], unique=False)
    op.create_index(op.f("ix_bookings_payment_status"), "bookings", ["payment_status"], unique=False)
    # One active booking per provider slot.
    op.create_index(
        "uq_bookings_active_slot",
        "bookings",
        ["provider_id", "appointment_date", "start_time"],
        unique=True,
        postgresql_where=_ACTIVE_SLOT_WHERE,
        sqlite_where=_ACTIVE_SLOT_WHERE,
    )

    op.create_table(
        "booking_reschedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("booking_id", sa.Integer(), nullable=False),
        sa.Column("original_date", sa.Date(), nullable=False),
        sa.Column("original_start_time", sa.String(), nullable=False),
        sa.Column("original_end_time", sa.String(), nullable=False),
        sa.Column("new_date", sa.Date(), nullable=False),
        sa.Column("new_start_time", sa.String(), nullable=False),
        sa.Column("new_end_time", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("rescheduled_at", sa.DateTime(), nullable=False),
        sa.Column("rescheduled_by", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_booking_reschedules_booking_id"), "booking_reschedules", ["booking_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_booking_reschedules_booking_id"), table_name="booking_reschedules")
    op.drop_table("booking_reschedules")
    op.drop_index("uq_bookings_active_slot", table_name="bookings")
    for column in ("payment_status", "payment_intent_id", "status", "appointment_date", "provider_id", "customer_id"):
        op.drop_index(op.f(f"ix_bookings_{column}"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index(op.f("ix_blocked_dates_blocked_date"), table_name="blocked_dates")
    op.drop_index(op.f("ix_blocked_dates_provider_id"), table_name="blocked_dates")
    op.drop_table("blocked_dates")
    op.drop_index(op.f("ix_working_days_provider_id"), table_name="working_days")
    op.drop_table("working_days")
    op.drop_index(op.f("ix_provider_services_name"), table_name="provider_services")
    op.drop_index(op.f("ix_provider_services_provider_id"), table_name="provider_services")
    op.drop_table("provider_services")
    for column in ("state", "city", "business_name", "user_id"):
        op.drop_index(op.f(f"ix_providers_{column}"), table_name="providers")
    op.drop_table("providers")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_index(op.f("ix_users_phone"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
