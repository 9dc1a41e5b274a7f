"""
Configuración centralizada de la aplicación.
Lee todas las variables de entorno usando pydantic-settings.
NUNCA hardcodear valores sensibles aquí.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Base de datos -------------------------------------------------------
    # URL asíncrona (asyncpg) para el servidor FastAPI
    DATABASE_URL: str

    # URL síncrona (psycopg2) usada exclusivamente por Alembic para migraciones
    DATABASE_SYNC_URL: str

    # --- Seguridad -----------------------------------------------------------
    # Clave compartida con el proveedor de identidad que emite los JWT.
    # Genera con: secrets.token_hex(32)
    SECRET_KEY: str

    # Tiempo de vida de los tokens emitidos por create_access_token (tooling/tests)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # --- Aplicación ----------------------------------------------------------
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    # Orígenes CORS permitidos (cadena separada por comas)
    CORS_ORIGINS: str = "http://localhost:3000"

    # --- Feed de precios (CoinGecko) -----------------------------------------
    PRICE_FEED_BASE_URL: str = "https://api.coingecko.com/api/v3"
    # Moneda de valoración del portafolio (toda la app trabaja en IDR)
    PRICE_VS_CURRENCY: str = "idr"
    # Opcional: clave del plan demo de CoinGecko (sube el rate limit)
    PRICE_FEED_API_KEY: str | None = None
    PRICE_FEED_TIMEOUT_SECONDS: float = 10.0
    # 0 desactiva el refresco periódico; el usuario puede lanzar POST /prices/sync
    PRICE_REFRESH_INTERVAL_MINUTES: int = 0

    # --- Rebalanceo ----------------------------------------------------------
    # Diferencias |delta| <= este valor (en moneda del portafolio) se consideran "on target"
    REBALANCE_DEAD_ZONE: Decimal = Decimal("100")

    # --- Propiedades calculadas ----------------------------------------------
    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @field_validator("PRICE_REFRESH_INTERVAL_MINUTES")
    @classmethod
    def validate_refresh_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("PRICE_REFRESH_INTERVAL_MINUTES debe ser >= 0")
        return v

    @field_validator("REBALANCE_DEAD_ZONE")
    @classmethod
    def validate_dead_zone(cls, v: Decimal) -> Decimal:
        if v < Decimal("0"):
            raise ValueError("REBALANCE_DEAD_ZONE no puede ser negativo")
        return v

    @field_validator("PRICE_VS_CURRENCY")
    @classmethod
    def validate_vs_currency(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = {"development", "production", "test"}
        if v not in allowed:
            raise ValueError(f"APP_ENV debe ser uno de: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL debe ser uno de: {allowed}")
        return v.upper()


@lru_cache
def get_settings() -> Settings:
    """Instancia singleton de Settings, cacheada para evitar re-lecturas del .env."""
    return Settings()


# Exportación conveniente para importar directamente en otros módulos
settings: Settings = get_settings()
