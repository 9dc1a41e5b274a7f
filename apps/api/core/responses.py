"""
Helpers para la estructura de respuesta estándar { data, error, meta }.
Todos los endpoints de la API deben usar estas funciones para garantizar
coherencia en el formato de respuesta.
"""

from decimal import Decimal
from typing import Any


def ok(data: Any = None, meta: dict | None = None) -> dict:
    """Respuesta exitosa."""
    return {"data": data, "error": None, "meta": meta or {}}


def err(message: str, code: str | None = None, meta: dict | None = None) -> dict:
    """Respuesta de error. `code` identifica el tipo de error de dominio (ver core.errors)."""
    meta = dict(meta or {})
    if code:
        meta["code"] = code
    return {"data": None, "error": message, "meta": meta}


def dec(value: Decimal | None, precision: Decimal | None = None) -> str | None:
    """Serializa Decimal como string (nunca float en la API), opcionalmente redondeado."""
    if value is None:
        return None
    if precision is not None:
        value = value.quantize(precision)
    return str(value)
