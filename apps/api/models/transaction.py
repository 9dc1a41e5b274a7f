"""
Modelo transactions: compras y ventas registradas por el usuario.
Inmutables una vez creadas (solo se pueden borrar).
"""

import uuid
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin

TRANSACTION_TYPES = ("buy", "sell")


class Transaction(TimestampMixin, Base):
    __tablename__ = "transactions"

    __table_args__ = (
        sa.Index("ix_transactions_user_created", "user_id", "created_at"),
        sa.Index("ix_transactions_coin_created", "coin_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    coin_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("coins.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(
        sa.Enum(*TRANSACTION_TYPES, name="transaction_type"),
        nullable=False,
    )
    # NUNCA usar float: NUMERIC(36,18) para cantidades y precios
    amount: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False)
    price_at_date: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False)
    # Solo ventas
    price_at_sale: Mapped[Decimal | None] = mapped_column(sa.NUMERIC(36, 18), nullable=True)
    realized_pnl: Mapped[Decimal | None] = mapped_column(sa.NUMERIC(36, 18), nullable=True)
    # Coste medio en el momento de la venta: necesario para revertirla al borrarla
    avg_cost_at_sale: Mapped[Decimal | None] = mapped_column(sa.NUMERIC(36, 18), nullable=True)

    # Relaciones
    coin: Mapped["Coin"] = relationship(back_populates="transactions")  # noqa: F821
