"""
Model store Postgres (psycopg) para:
- una tabla tipada por tipo de entidad (columnas derivadas de los ModelField)
- UPSERT por id (create/update del CMS)
- DELETE con limpieza de referencias en las tablas que apuntan al tipo borrado
- advisory lock para evitar pases de sync simultáneos

Se usa psycopg (v3). Las referencias se guardan como ids (TEXT / TEXT[]),
sin blobs JSON para relaciones.
"""

from __future__ import annotations

import json
import re
import zlib
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg
from psycopg.rows import dict_row

from cms_mirror.infrastructure.external.cms_sync.types import ID_FIELD, ModelField, utc_now
from cms_mirror.shared.exceptions.sync import SyncInProgressError

from .base import BaseModelStore

_PG_SCALAR_TYPES = {
    "string": "TEXT",
    "number": "DOUBLE PRECISION",
    "integer": "BIGINT",
    "boolean": "BOOLEAN",
}

SYNCED_AT_COLUMN = "synced_at"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def to_snake_case(name: str) -> str:
    """UserEntity -> user_entity; 'Page Entity' -> page_entity."""
    name = re.sub(r"[^0-9A-Za-z]+", "_", name.strip())
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name)
    return name.strip("_").lower()


def column_type(model_field: ModelField) -> str:
    """Tipo SQL de la columna para un ModelField."""
    if model_field.is_resolved_reference:
        return "TEXT[]" if model_field.is_list else "TEXT"
    return _PG_SCALAR_TYPES.get(model_field.target_type or "", "TEXT")


def stable_lock_key(namespace: str, name: str) -> int:
    """
    Lock key reproducible para pg_advisory_lock.

    hash() no es estable entre procesos; crc32 sí.
    """
    raw = (namespace + ":" + name).encode("utf-8")
    return zlib.crc32(raw) & 0x7FFFFFFF


class PostgresModelStore(BaseModelStore):
    name = "postgres"

    def __init__(
        self,
        dsn: str,
        *,
        schema: str = "cms",
        type_prefix: str = "Workshop",
        connection: Optional[psycopg.Connection] = None,
    ) -> None:
        super().__init__()
        self._dsn = dsn
        self._schema = schema
        self._type_prefix = type_prefix
        self._conn = connection

    def connect(self) -> psycopg.Connection:
        """
        Abre conexión (autocommit False). El store controla commits.
        """
        try:
            return psycopg.connect(self._dsn, row_factory=dict_row)
        except psycopg.OperationalError as e:
            raise psycopg.OperationalError(
                f"{e}\n"
                f"Sugerencia: verifica que DATABASE_URL sea accesible desde donde ejecutas el sync.\n"
                f"- Un hostname de Docker (p.ej. 'postgres') solo resuelve dentro de la red de Docker."
            ) from e

    @property
    def conn(self) -> psycopg.Connection:
        if self._conn is None:
            self._conn = self.connect()
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def table_name(self, kind: str) -> str:
        prefix = to_snake_case(self._type_prefix)
        table = to_snake_case(kind)
        return f"{prefix}_{table}" if prefix else table

    def qualified_table(self, kind: str) -> str:
        return f"{quote_ident(self._schema)}.{quote_ident(self.table_name(kind))}"

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    @contextmanager
    def session_lock(self) -> Iterator[None]:
        """
        Evita ejecuciones simultáneas del sync, también entre procesos.
        """
        with super().session_lock():
            key = stable_lock_key("cms_sync", f"{self._schema}:{self._type_prefix}")
            with self.conn.cursor() as cur:
                cur.execute("SELECT pg_try_advisory_lock(%s) AS locked", (key,))
                row = cur.fetchone()
            self.conn.commit()
            if not (row and row.get("locked")):
                raise SyncInProgressError(self.name)
            try:
                yield
            finally:
                with self.conn.cursor() as cur:
                    cur.execute("SELECT pg_advisory_unlock(%s)", (key,))
                self.conn.commit()

    def _ensure_model(self, kind: str, fields: Dict[str, ModelField]) -> None:
        table = self.qualified_table(kind)
        with self.conn.cursor() as cur:
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(self._schema)};")
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    "{ID_FIELD}"           TEXT        PRIMARY KEY,
                    "{SYNCED_AT_COLUMN}"   TIMESTAMPTZ NOT NULL DEFAULT now()
                );
                """
            )
            # Drift de schema entre sesiones: columnas nuevas se agregan
            for field_name, model_field in fields.items():
                cur.execute(
                    f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                    f"{quote_ident(field_name)} {column_type(model_field)};"
                )

    def _to_db_value(self, model_field: ModelField, value: Any) -> Any:
        if model_field.is_resolved_reference or value is None:
            return value
        if column_type(model_field) == "TEXT" and isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return value

    def _upsert_rows(self, kind: str, fields: Dict[str, ModelField], rows: list[Dict[str, Any]]) -> int:
        """
        UPSERT por id. Last write wins: el CMS no distingue create/update.
        """
        columns = [ID_FIELD, *fields.keys(), SYNCED_AT_COLUMN]
        insert_cols_sql = ", ".join(quote_ident(c) for c in columns)
        placeholders = ", ".join(["%s"] * len(columns))

        # SET para UPDATE: no actualizamos PK.
        set_sql = ", ".join(
            f"{quote_ident(c)} = EXCLUDED.{quote_ident(c)}" for c in columns if c != ID_FIELD
        )

        sql = f"""
            INSERT INTO {self.qualified_table(kind)} ({insert_cols_sql})
            VALUES ({placeholders})
            ON CONFLICT ({quote_ident(ID_FIELD)})
            DO UPDATE SET
                {set_sql}
        """

        synced_at = utc_now()
        values = [
            (
                row[ID_FIELD],
                *(self._to_db_value(f, row.get(name)) for name, f in fields.items()),
                synced_at,
            )
            for row in rows
        ]

        with self.conn.cursor() as cur:
            cur.executemany(sql, values)
        return len(values)

    def _delete_row(self, kind: str, entity_id: str) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                f"DELETE FROM {self.qualified_table(kind)} WHERE {quote_ident(ID_FIELD)} = %s",
                (entity_id,),
            )
            return bool(cur.rowcount)

    def _detach_reference(self, model: str, field_name: str, is_list: bool, entity_id: str) -> None:
        table = self.qualified_table(model)
        column = quote_ident(field_name)
        with self.conn.cursor() as cur:
            if is_list:
                cur.execute(
                    f"UPDATE {table} SET {column} = array_remove({column}, %s) WHERE %s = ANY({column})",
                    (entity_id, entity_id),
                )
            else:
                cur.execute(
                    f"UPDATE {table} SET {column} = NULL WHERE {column} = %s",
                    (entity_id,),
                )
