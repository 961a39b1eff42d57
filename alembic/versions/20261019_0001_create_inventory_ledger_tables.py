"""create locations, stock records, and stock movements

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "locations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_locations_active_created_at", "locations", ["is_active", "created_at"], unique=False)

    op.create_table(
        "stock_records",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minimum", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        sa.CheckConstraint("reserved >= 0", name="ck_stock_records_reserved_non_negative"),
        sa.CheckConstraint("reserved <= quantity", name="ck_stock_records_reserved_within_quantity"),
        sa.CheckConstraint("minimum >= 0", name="ck_stock_records_minimum_non_negative"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("variant_id", "location_id", name="uq_stock_records_variant_location"),
    )
    op.create_index("ix_stock_records_variant_id", "stock_records", ["variant_id"], unique=False)
    op.create_index("ix_stock_records_location_id", "stock_records", ["location_id"], unique=False)
    op.create_index(
        "ix_stock_records_location_quantity",
        "stock_records",
        ["location_id", "quantity"],
        unique=False,
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=False),
        sa.Column("operation_type", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("from_location_id", sa.String(length=36), nullable=True),
        sa.Column("to_location_id", sa.String(length=36), nullable=True),
        sa.Column("reference", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference"], unique=False)
    op.create_index(
        "ix_stock_movements_variant_created_at",
        "stock_movements",
        ["variant_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stock_movements_from_location_created_at",
        "stock_movements",
        ["from_location_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stock_movements_to_location_created_at",
        "stock_movements",
        ["to_location_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_stock_movements_to_location_created_at", table_name="stock_movements")
    op.drop_index("ix_stock_movements_from_location_created_at", table_name="stock_movements")
    op.drop_index("ix_stock_movements_variant_created_at", table_name="stock_movements")
    op.drop_index("ix_stock_movements_reference", table_name="stock_movements")
    op.drop_table("stock_movements")

    op.drop_index("ix_stock_records_location_quantity", table_name="stock_records")
    op.drop_index("ix_stock_records_location_id", table_name="stock_records")
    op.drop_index("ix_stock_records_variant_id", table_name="stock_records")
    op.drop_table("stock_records")

    op.drop_index("ix_locations_active_created_at", table_name="locations")
    op.drop_table("locations")
