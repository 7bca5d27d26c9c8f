"""Initial schema for the delivery lifecycle.

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

Creates:
- users (senders, dispatchers, couriers, admins)
- deliveries (status, tracking code, version counter)
- assignments (courier ledger)
- delivery_events (append-only audit trail)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

STATUSES = (
    "DRAFT",
    "CREATED",
    "ASSIGNED",
    "PICKED_UP",
    "IN_TRANSIT",
    "OUT_FOR_DELIVERY",
    "DELIVERED",
    "CANCELLED",
    "FAILED_DELIVERY",
    "RETURNED",
)


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply migration: initial delivery lifecycle schema."""
    actor_role = postgresql.ENUM(
        "SENDER", "DISPATCHER", "COURIER", "ADMIN", name="actor_role", create_type=False
    )
    actor_role.create(op.get_bind(), checkfirst=True)

    delivery_priority = postgresql.ENUM(
        "LOW", "MEDIUM", "HIGH", name="delivery_priority", create_type=False
    )
    delivery_priority.create(op.get_bind(), checkfirst=True)

    delivery_status = postgresql.ENUM(*STATUSES, name="delivery_status", create_type=False)
    delivery_status.create(op.get_bind(), checkfirst=True)

    delivery_event_type = postgresql.ENUM(
        *STATUSES, name="delivery_event_type", create_type=False
    )
    delivery_event_type.create(op.get_bind(), checkfirst=True)

    # =========================================================================
    # Users
    # =========================================================================
    op.create_table(
        "users",
        _uuid_pk("user_id"),
        _timestamp("created_at"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", actor_role, nullable=False),
        sa.PrimaryKeyConstraint("user_id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name=op.f("uq_users_email")),
    )
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)

    # =========================================================================
    # Deliveries
    # =========================================================================
    op.create_table(
        "deliveries",
        _uuid_pk("delivery_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("tracking_code", sa.String(32), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(2000), nullable=True),
        sa.Column("priority", delivery_priority, nullable=False),
        sa.Column("status", delivery_status, nullable=False),
        sa.Column("receiver_name", sa.String(255), nullable=False),
        sa.Column("receiver_phone", sa.String(50), nullable=False),
        sa.Column("destination_address", sa.String(1000), nullable=False),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("label_url", sa.String(1000), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["sender_id"],
            ["users.user_id"],
            name=op.f("fk_deliveries_sender_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("delivery_id", name=op.f("pk_deliveries")),
        sa.UniqueConstraint("tracking_code", name=op.f("uq_deliveries_tracking_code")),
    )
    op.create_index(op.f("ix_deliveries_sender_id"), "deliveries", ["sender_id"], unique=False)
    op.create_index(op.f("ix_deliveries_status"), "deliveries", ["status"], unique=False)
    op.create_index(op.f("ix_deliveries_created_at"), "deliveries", ["created_at"], unique=False)

    # =========================================================================
    # Assignment ledger
    # =========================================================================
    op.create_table(
        "assignments",
        _uuid_pk("assignment_id"),
        sa.Column("delivery_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("courier_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        _timestamp("assigned_at"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.delivery_id"],
            name=op.f("fk_assignments_delivery_id_deliveries"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["courier_id"],
            ["users.user_id"],
            name=op.f("fk_assignments_courier_id_users"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["assigned_by_id"],
            ["users.user_id"],
            name=op.f("fk_assignments_assigned_by_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("assignment_id", name=op.f("pk_assignments")),
        sa.UniqueConstraint(
            "delivery_id", "sequence", name="uq_assignments_delivery_sequence"
        ),
    )
    op.create_index(
        op.f("ix_assignments_courier_id"), "assignments", ["courier_id"], unique=False
    )

    # =========================================================================
    # Audit trail
    # =========================================================================
    op.create_table(
        "delivery_events",
        _uuid_pk("event_id"),
        sa.Column("delivery_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("type", delivery_event_type, nullable=False),
        sa.Column("note", sa.String(2000), nullable=True),
        sa.Column("location_text", sa.String(500), nullable=True),
        sa.Column("proof_image_url", sa.String(1000), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["delivery_id"],
            ["deliveries.delivery_id"],
            name=op.f("fk_delivery_events_delivery_id_deliveries"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["created_by_id"],
            ["users.user_id"],
            name=op.f("fk_delivery_events_created_by_id_users"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("event_id", name=op.f("pk_delivery_events")),
        sa.UniqueConstraint(
            "delivery_id", "sequence", name="uq_delivery_events_delivery_sequence"
        ),
    )
    op.create_index(
        op.f("ix_delivery_events_created_by_id"),
        "delivery_events",
        ["created_by_id"],
        unique=False,
    )


def downgrade() -> None:
    """Revert migration: initial delivery lifecycle schema."""
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("delivery_events")
    op.drop_table("assignments")
    op.drop_table("deliveries")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS delivery_event_type")
    op.execute("DROP TYPE IF EXISTS delivery_status")
    op.execute("DROP TYPE IF EXISTS delivery_priority")
    op.execute("DROP TYPE IF EXISTS actor_role")
