"""create asset_stats table

Revision ID: 003_create_asset_stats
Revises: 002_create_transactions
Create Date: 2026-10-19 00:02:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "003_create_asset_stats"
down_revision: Union[str, None] = "002_create_transactions"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "asset_stats",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("coin_id", sa.UUID(), nullable=False),
        sa.Column("total_qty", sa.NUMERIC(36, 18), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.NUMERIC(36, 18), nullable=False, server_default="0"),
        sa.Column("avg_buy_price", sa.NUMERIC(36, 18), nullable=False, server_default="0"),
        sa.Column("target_pct", sa.NUMERIC(5, 2), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["coin_id"], ["coins.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        # Un agregado por (usuario, moneda)
        sa.UniqueConstraint("user_id", "coin_id", name="uq_asset_stats_user_coin"),
    )


def downgrade() -> None:
    op.drop_table("asset_stats")
