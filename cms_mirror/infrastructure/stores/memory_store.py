"""
Model store en memoria.

Útil para desarrollo y tests: mismo contrato que el store de Postgres
(upsert por id, borrado con limpieza de referencias inversas).
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from cms_mirror.infrastructure.external.cms_sync.types import ModelField

from .base import BaseModelStore


class InMemoryModelStore(BaseModelStore):
    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._rows: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def get(self, kind: str, entity_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(kind, {}).get(str(entity_id))
            return copy.deepcopy(row) if row is not None else None

    def all(self, kind: str) -> list[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rows.get(kind, {}).values()]

    def ids(self, kind: str) -> set[str]:
        with self._lock:
            return set(self._rows.get(kind, {}).keys())

    def count(self, kind: str) -> int:
        with self._lock:
            return len(self._rows.get(kind, {}))

    def _ensure_model(self, kind: str, fields: Dict[str, ModelField]) -> None:
        self._rows.setdefault(kind, {})

    def _upsert_rows(self, kind: str, fields: Dict[str, ModelField], rows: list[Dict[str, Any]]) -> int:
        table = self._rows[kind]
        for row in rows:
            table[row["id"]] = copy.deepcopy(row)
        return len(rows)

    def _delete_row(self, kind: str, entity_id: str) -> bool:
        return self._rows[kind].pop(entity_id, None) is not None

    def _detach_reference(self, model: str, field_name: str, is_list: bool, entity_id: str) -> None:
        for row in self._rows.get(model, {}).values():
            if is_list:
                refs = row.get(field_name) or []
                if entity_id in refs:
                    row[field_name] = [r for r in refs if r != entity_id]
            elif row.get(field_name) == entity_id:
                row[field_name] = None
