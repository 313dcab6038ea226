"""
Initial schema: tenants, devices, sensor catalog, samples and settings.

Creates organizations, users, devices, sensors, decoding_configs, samples
and settings. Every ownership foreign key is ON DELETE CASCADE so deleting
an organization, device or sensor removes everything beneath it.

Revision ID: 001
Revises: None
Create Date: 2026-10-17

CHANGELOG:
- 2026-10-17: Initial creation
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# Revision identifiers used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def _is_active() -> sa.Column:
    return sa.Column(
        "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
    )


def upgrade() -> None:
    """Create all tables, constraints and indexes."""
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("contact_email", sa.Text(), nullable=True),
        sa.Column("contact_phone", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        _is_active(),
        _created_at(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column(
            "role", sa.Text(), nullable=False, server_default=sa.text("'user'")
        ),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _is_active(),
        _created_at(),
        sa.CheckConstraint(
            "role IN ('admin', 'user', 'viewer')", name="ck_users_role"
        ),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    op.create_table(
        "devices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ip_address", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _is_active(),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_devices_organization_id", "devices", ["organization_id"])

    op.create_table(
        "sensors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "device_id",
            sa.Integer(),
            sa.ForeignKey("devices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sensor_type", sa.Text(), nullable=False),
        sa.Column("unit", sa.Text(), nullable=True),
        _is_active(),
        _created_at(),
        sa.UniqueConstraint("device_id", "name", name="uq_sensors_device_name"),
    )

    op.create_table(
        "decoding_configs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "sensor_id",
            sa.Integer(),
            sa.ForeignKey("sensors.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("address", sa.Integer(), nullable=False),
        sa.Column("register_kind", sa.Text(), nullable=False),
        sa.Column("encoding", sa.Text(), nullable=False),
        sa.Column(
            "scale", sa.Double(), nullable=False, server_default=sa.text("1.0")
        ),
        sa.Column(
            "offset", sa.Double(), nullable=False, server_default=sa.text("0.0")
        ),
        sa.Column(
            "version", sa.Integer(), nullable=False, server_default=sa.text("1")
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "samples",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "sensor_id",
            sa.Integer(),
            sa.ForeignKey("sensors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("value", sa.Double(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_samples_ts", "samples", ["ts"])
    op.create_index("ix_samples_sensor_ts", "samples", ["sensor_id", "ts"])

    op.create_table(
        "settings",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("settings")
    op.drop_index("ix_samples_sensor_ts", table_name="samples")
    op.drop_index("ix_samples_ts", table_name="samples")
    op.drop_table("samples")
    op.drop_table("decoding_configs")
    op.drop_table("sensors")
    op.drop_index("ix_devices_organization_id", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_users_organization_id", table_name="users")
    op.drop_table("users")
    op.drop_table("organizations")
