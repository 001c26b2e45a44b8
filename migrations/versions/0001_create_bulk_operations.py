"""create bulk_operations, vanity_codes and authorized_domains

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonColumn = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "bulk_operations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("operation_type", sa.String(length=50), nullable=False),
        sa.Column("operation_name", sa.String(length=100), nullable=False),
        sa.Column("items", JsonColumn, nullable=False),
        sa.Column("options", JsonColumn, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("processed_items", sa.Integer(), nullable=False),
        sa.Column("progress_percentage", sa.Float(), nullable=False),
        sa.Column("errors", JsonColumn, nullable=False),
        sa.Column("rollback_data", JsonColumn, nullable=False),
        sa.Column("rollback_errors", JsonColumn, nullable=False),
        sa.Column("can_rollback", sa.Boolean(), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bulk_operations_status", "bulk_operations", ["status"])
    op.create_index("ix_bulk_operations_owner", "bulk_operations", ["owner"])
    op.create_index("ix_bulk_operations_started_at", "bulk_operations", ["started_at"])
    op.create_index("ix_bulk_operations_operation_type", "bulk_operations", ["operation_type"])
    op.create_index("ix_bulk_operations_can_rollback", "bulk_operations", ["can_rollback"])

    op.create_table(
        "vanity_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("vanity_code", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("discount_type", sa.String(length=20), nullable=True),
        sa.Column("discount_value", sa.Float(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("conversion_count", sa.Integer(), nullable=False),
        sa.Column("revenue_generated", sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("vanity_code"),
    )

    op.create_table(
        "authorized_domains",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("api_key", sa.String(length=64), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspended_reason", sa.String(length=255), nullable=True),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("domain"),
    )


def downgrade() -> None:
    op.drop_table("authorized_domains")
    op.drop_table("vanity_codes")
    op.drop_index("ix_bulk_operations_can_rollback", table_name="bulk_operations")
    op.drop_index("ix_bulk_operations_operation_type", table_name="bulk_operations")
    op.drop_index("ix_bulk_operations_started_at", table_name="bulk_operations")
    op.drop_index("ix_bulk_operations_owner", table_name="bulk_operations")
    op.drop_index("ix_bulk_operations_status", table_name="bulk_operations")
    op.drop_table("bulk_operations")
