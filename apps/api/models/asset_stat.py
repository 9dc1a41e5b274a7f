"""
Modelo asset_stats: agregado en curso por (usuario, moneda).

Es una proyección derivada del log de transactions: se puede reconstruir en
cualquier momento con PortfolioService.rebuild_aggregates().
"""

import uuid
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base


class AssetStat(Base):
    __tablename__ = "asset_stats"

    __table_args__ = (
        sa.UniqueConstraint("user_id", "coin_id", name="uq_asset_stats_user_coin"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    coin_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("coins.id", ondelete="CASCADE"), nullable=False
    )
    total_qty: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False, server_default="0")
    total_cost: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False, server_default="0")
    avg_buy_price: Mapped[Decimal] = mapped_column(sa.NUMERIC(36, 18), nullable=False, server_default="0")
    # Asignación objetivo (0-100) usada por el planificador de rebalanceo
    target_pct: Mapped[Decimal] = mapped_column(sa.NUMERIC(5, 2), nullable=False, server_default="0")

    # Relaciones
    coin: Mapped["Coin"] = relationship(back_populates="stats")  # noqa: F821
