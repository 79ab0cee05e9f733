"""add soft-delete columns to transactions

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 15:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0002"
down_revision: Union[str, None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if "transactions" not in inspector.get_table_names():
        return

    existing_columns = {col["name"] for col in inspector.get_columns("transactions")}
    if "deleted_at" not in existing_columns:
        op.add_column("transactions", sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    if "deleted_by_id" not in existing_columns:
        op.add_column("transactions", sa.Column("deleted_by_id", sa.String(length=36), nullable=True))


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if "transactions" not in inspector.get_table_names():
        return

    existing_columns = {col["name"] for col in inspector.get_columns("transactions")}
    if "deleted_by_id" in existing_columns:
        op.drop_column("transactions", "deleted_by_id")
    if "deleted_at" in existing_columns:
        op.drop_column("transactions", "deleted_at")
