"""
Capa de seguridad: JWT HS256 para autenticación de la API.

La identidad la gestiona un proveedor externo que firma los tokens con la misma
SECRET_KEY; aquí solo se verifican. El subject (`sub`) es el id del usuario.

NUNCA loguear ni exponer SECRET_KEY ni los tokens completos.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import settings

ALGORITHM = "HS256"


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """
    Genera un JWT para `user_id` (tooling interno y tests).
    La expiración por defecto es ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> str:
    """
    Valida el JWT y retorna el id de usuario.
    Lanza ValueError si el token es inválido, expirado o no trae subject.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ValueError(f"Token inválido: {exc}") from exc

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise ValueError("Token sin subject")
    return sub
