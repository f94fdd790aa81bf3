"""
Selección del model store destino según configuración.
"""
from loguru import logger

from cms_mirror.core.config import Settings, normalize_psycopg_dsn
from cms_mirror.shared.exceptions.base import AppException

from .base import BaseModelStore
from .memory_store import InMemoryModelStore


class StoreConfigError(AppException):
    """Configuración inválida del store destino."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="STORE_CONFIG_ERROR")


def build_store(settings: Settings) -> BaseModelStore:
    """
    Construye el store indicado por TARGET_STORE.

    Raises:
        StoreConfigError: store desconocido o DATABASE_URL ausente/no Postgres
    """
    kind = settings.TARGET_STORE.strip().lower()

    if kind == "memory":
        logger.info("Store destino: memoria")
        return InMemoryModelStore()

    if settings.is_postgres_store:
        if not settings.DATABASE_URL:
            raise StoreConfigError("TARGET_STORE=postgres requiere DATABASE_URL")
        dsn = normalize_psycopg_dsn(settings.DATABASE_URL)
        if "postgres" not in dsn:
            # Evitamos errores silenciosos con otros motores.
            raise StoreConfigError(f"DATABASE_URL debe apuntar a Postgres. Valor actual: {settings.DATABASE_URL}")

        # Import diferido: psycopg solo es necesario con este store.
        from .pg_store import PostgresModelStore

        logger.info(f'Store destino: Postgres (schema "{settings.TARGET_SCHEMA}")')
        return PostgresModelStore(
            dsn,
            schema=settings.TARGET_SCHEMA,
            type_prefix=settings.TYPE_PREFIX,
        )

    raise StoreConfigError(f"TARGET_STORE desconocido: {settings.TARGET_STORE}")
