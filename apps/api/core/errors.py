"""
Taxonomía de errores del dominio.

Ninguno es fatal para el proceso: los handlers globales de main.py los traducen
a respuestas { data, error, meta } y las recomputaciones en vivo conservan el
último estado bueno conocido.
"""

from decimal import Decimal


class PortfolioError(Exception):
    """Base de todos los errores de dominio. `code` es estable y viaja en meta."""

    code: str = "portfolio_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidInput(PortfolioError):
    """Cantidad/precio no numérico, no finito o no positivo. Se rechaza antes del ledger."""

    code = "invalid_input"
    status_code = 422


class InsufficientQuantity(PortfolioError):
    """La venta (o el borrado de una compra) dejaría la posición en negativo."""

    code = "insufficient_quantity"
    status_code = 409

    def __init__(self, requested: Decimal, available: Decimal, symbol: str | None = None) -> None:
        self.requested = requested
        self.available = available
        self.symbol = symbol
        label = f" de {symbol}" if symbol else ""
        super().__init__(
            f"Saldo insuficiente{label}: solicitado {requested}, disponible {available}"
        )


class NotFound(PortfolioError):
    code = "not_found"
    status_code = 404


class StoreUnavailable(PortfolioError):
    """Fallo de red/BD del store. Recuperable: se mantiene el último estado bueno."""

    code = "store_unavailable"
    status_code = 503


class Aborted(PortfolioError):
    """Operación cancelada (vista cerrada o recomputación superada por otra más nueva)."""

    code = "aborted"
    status_code = 499


class PriceFeedError(PortfolioError):
    """El feed de precios falló. Nunca debe romper una pasada de valoración."""

    code = "price_feed_error"
    status_code = 502

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)
