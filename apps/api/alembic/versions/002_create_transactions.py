"""create transactions table

Revision ID: 002_create_transactions
Revises: 001_create_coins
Create Date: 2026-10-19 00:01:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import ENUM as PgEnum

revision: str = "002_create_transactions"
down_revision: Union[str, None] = "001_create_coins"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ("buy", "sell")

_transaction_type = PgEnum(*TRANSACTION_TYPES, name="transaction_type", create_type=False)


def upgrade() -> None:
    # Crear el ENUM de forma idempotente
    values = ", ".join(f"'{v}'" for v in TRANSACTION_TYPES)
    op.execute(
        f"DO $$ BEGIN "
        f"CREATE TYPE transaction_type AS ENUM ({values}); "
        f"EXCEPTION WHEN duplicate_object THEN NULL; "
        f"END $$;"
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("coin_id", sa.UUID(), nullable=False),
        sa.Column("type", _transaction_type, nullable=False),
        sa.Column("amount", sa.NUMERIC(36, 18), nullable=False),
        sa.Column("price_at_date", sa.NUMERIC(36, 18), nullable=False),
        # Solo ventas: precio de venta, P&L realizado y coste medio en el momento de la venta
        sa.Column("price_at_sale", sa.NUMERIC(36, 18), nullable=True),
        sa.Column("realized_pnl", sa.NUMERIC(36, 18), nullable=True),
        sa.Column("avg_cost_at_sale", sa.NUMERIC(36, 18), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(["coin_id"], ["coins.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_transactions_user_created", "transactions", ["user_id", "created_at"])
    op.create_index("ix_transactions_coin_created", "transactions", ["coin_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_transactions_coin_created", table_name="transactions")
    op.drop_index("ix_transactions_user_created", table_name="transactions")
    op.drop_table("transactions")
    op.execute("DROP TYPE IF EXISTS transaction_type")
