"""add location type and parent hierarchy

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 15:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_0002"
down_revision: Union[str, None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("locations") as batch_op:
        batch_op.add_column(
            sa.Column("type", sa.String(length=20), nullable=False, server_default="WAREHOUSE")
        )
        batch_op.add_column(sa.Column("parent_id", sa.String(length=36), nullable=True))
        batch_op.create_foreign_key("fk_locations_parent_id_locations", "locations", ["parent_id"], ["id"])
        batch_op.create_index("ix_locations_parent_id", ["parent_id"], unique=False)
        batch_op.create_index("ix_locations_type_active", ["type", "is_active"], unique=False)


def downgrade() -> None:
    with op.batch_alter_table("locations") as batch_op:
        batch_op.drop_index("ix_locations_type_active")
        batch_op.drop_index("ix_locations_parent_id")
        batch_op.drop_constraint("fk_locations_parent_id_locations", type_="foreignkey")
        batch_op.drop_column("parent_id")
        batch_op.drop_column("type")
