"""create coins table

Revision ID: 001_create_coins
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_create_coins"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "coins",
        sa.Column("id", sa.UUID(), nullable=False),
        # user_id: subject del JWT emitido por el proveedor de identidad
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("coingecko_id", sa.String(100), nullable=True),
        sa.Column("wallet_address", sa.String(200), nullable=True),
        # NUMERIC(36,18): precios en IDR con decimales de sobra
        sa.Column("current_price", sa.NUMERIC(36, 18), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coins_user_symbol", "coins", ["user_id", "symbol"])


def downgrade() -> None:
    op.drop_index("ix_coins_user_symbol", table_name="coins")
    op.drop_table("coins")
