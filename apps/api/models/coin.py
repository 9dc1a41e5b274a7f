"""
Modelo coins: monedas registradas manualmente por cada usuario.
"""

import uuid
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin


class Coin(TimestampMixin, Base):
    __tablename__ = "coins"

    __table_args__ = (
        sa.Index("ix_coins_user_symbol", "user_id", "symbol"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Id del usuario en el proveedor de identidad externo (subject del JWT)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    coingecko_id: Mapped[str | None] = mapped_column(sa.String(100), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(sa.String(200), nullable=True)
    # Último precio conocido en la moneda del portafolio (IDR por defecto)
    current_price: Mapped[Decimal] = mapped_column(
        sa.NUMERIC(36, 18), nullable=False, server_default="0"
    )

    # Relaciones
    transactions: Mapped[list["Transaction"]] = relationship(  # noqa: F821
        back_populates="coin", passive_deletes=True
    )
    stats: Mapped["AssetStat | None"] = relationship(  # noqa: F821
        back_populates="coin", passive_deletes=True, uselist=False
    )
