"""
Entorno de Alembic para las tablas coins, transactions y asset_stats.

La URL sale de DATABASE_SYNC_URL (driver psycopg2, conexión síncrona) salvo que se
pase otra por línea de comandos:  alembic -x url=postgresql://... upgrade head
"""

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

# apps/api en el path para importar config y modelos
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import models  # noqa: F401, E402  (registra las tablas en Base.metadata)
from core.config import settings  # noqa: E402
from models.base import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("url") or settings.DATABASE_SYNC_URL


def run_migrations_offline() -> None:
    """Emite el SQL sin conectarse (revisión manual o CI)."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
