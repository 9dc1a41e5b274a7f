"""
Modelos SQLAlchemy. Importar aquí para que Alembic los detecte en autogenerate.
"""

from models.asset_stat import AssetStat
from models.coin import Coin
from models.transaction import Transaction

__all__ = [
    "AssetStat",
    "Coin",
    "Transaction",
]
