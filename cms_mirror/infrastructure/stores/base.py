"""
Contrato del model store destino.

El engine de sync solo usa:
- define_model(tipo, campos) -> ModelHandle
- models[tipo].create(instancia | [instancias])   (upsert por id)
- models[tipo].delete({"id": ...})
- session_lock() para serializar pases de sync

Las operaciones son thread-safe: el full sync puede cargar tipos en paralelo.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from typing import Any, ContextManager, Dict, Iterator, Mapping, Optional, Sequence

from cms_mirror.infrastructure.external.cms_sync.types import ID_FIELD, ModelField
from cms_mirror.shared.exceptions.sync import (
    InvalidEntityError,
    SyncInProgressError,
    UnknownEntityKindError,
)


def extract_id(value: Any) -> Optional[str]:
    """Id de una referencia: {"id": ...} o el id directo."""
    if isinstance(value, Mapping):
        value = value.get(ID_FIELD)
    if value is None or value == "" or isinstance(value, (bool, Mapping, list)):
        return None
    return str(value)


def normalize_reference(value: Any, is_list: bool) -> Any:
    """Convierte referencias (objetos parciales o ids) en ids."""
    if not is_list:
        return extract_id(value)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    ids = (extract_id(v) for v in value)
    return [i for i in ids if i is not None]


class ModelHandle:
    """Capacidad por tipo de entidad que el engine recibe del store."""

    def __init__(self, store: "BaseModelStore", name: str) -> None:
        self._store = store
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def create(self, instances: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> int:
        """Upsert de una instancia o de una colección. Retorna filas escritas."""
        if isinstance(instances, Mapping):
            instances = [instances]
        return self._store.upsert(self._name, list(instances))

    def delete(self, id_holder: Any) -> bool:
        """Borra por id ({"id": ...} o id directo). Retorna True si existía."""
        entity_id = extract_id(id_holder)
        if entity_id is None:
            raise InvalidEntityError(self._name)
        return self._store.remove(self._name, entity_id)

    def __repr__(self) -> str:
        return f"ModelHandle({self._name!r})"


class BaseModelStore(ABC):
    """Base de los stores: registro de modelos, normalización y locking."""

    name = "base"

    def __init__(self) -> None:
        self._models: Dict[str, Dict[str, ModelField]] = {}
        self._handles: Dict[str, ModelHandle] = {}
        self._lock = threading.RLock()
        self._session_guard = threading.Lock()

    @property
    def models(self) -> Dict[str, ModelHandle]:
        with self._lock:
            return dict(self._handles)

    def fields_of(self, kind: str) -> Dict[str, ModelField]:
        return dict(self._require(kind))

    def define_model(self, kind: str, fields: Mapping[str, ModelField]) -> ModelHandle:
        """Define (o redefine) un modelo. Idempotente."""
        fields = dict(fields)
        with self._lock, self._transaction():
            self._ensure_model(kind, fields)
            self._models[kind] = fields
            handle = self._handles.get(kind)
            if handle is None:
                handle = ModelHandle(self, kind)
                self._handles[kind] = handle
            return handle

    def upsert(self, kind: str, instances: Sequence[Mapping[str, Any]]) -> int:
        with self._lock:
            fields = self._require(kind)
            rows = [self._to_row(kind, fields, instance) for instance in instances]
            if not rows:
                return 0
            with self._transaction():
                return self._upsert_rows(kind, fields, rows)

    def remove(self, kind: str, entity_id: str) -> bool:
        """Borra la instancia y la quita de las referencias de otros modelos."""
        with self._lock:
            self._require(kind)
            with self._transaction():
                removed = self._delete_row(kind, entity_id)
                for model, field_name, model_field in self.referencing_fields(kind):
                    self._detach_reference(model, field_name, model_field.is_list, entity_id)
                return removed

    def referencing_fields(self, kind: str) -> list[tuple[str, str, ModelField]]:
        """(modelo, campo, definición) de todas las referencias hacia `kind`."""
        return [
            (model, field_name, model_field)
            for model, fields in self._models.items()
            for field_name, model_field in fields.items()
            if model_field.is_reference and model_field.target_type == kind
        ]

    @contextmanager
    def session_lock(self) -> Iterator[None]:
        """
        Guard single-flight: un solo pase de sync a la vez sobre el store.

        Raises:
            SyncInProgressError: si otro pase ya tiene el lock
        """
        if not self._session_guard.acquire(blocking=False):
            raise SyncInProgressError(self.name)
        try:
            yield
        finally:
            self._session_guard.release()

    def close(self) -> None:
        """Libera recursos del store (no-op por defecto)."""

    def _require(self, kind: str) -> Dict[str, ModelField]:
        fields = self._models.get(kind)
        if fields is None:
            raise UnknownEntityKindError(kind)
        return fields

    def _to_row(self, kind: str, fields: Mapping[str, ModelField], instance: Any) -> Dict[str, Any]:
        if not isinstance(instance, Mapping):
            raise InvalidEntityError(kind, "la instancia no es un objeto")
        entity_id = extract_id(instance.get(ID_FIELD))
        if entity_id is None:
            raise InvalidEntityError(kind)

        # Atributos no declarados en el modelo se descartan
        row: Dict[str, Any] = {ID_FIELD: entity_id}
        for field_name, model_field in fields.items():
            value = instance.get(field_name)
            # Referencias sin tipo destino se guardan tal cual
            if model_field.is_resolved_reference:
                value = normalize_reference(value, model_field.is_list)
            row[field_name] = value
        return row

    def _transaction(self) -> ContextManager[Any]:
        return nullcontext()

    @abstractmethod
    def _ensure_model(self, kind: str, fields: Dict[str, ModelField]) -> None:
        ...

    @abstractmethod
    def _upsert_rows(self, kind: str, fields: Dict[str, ModelField], rows: list[Dict[str, Any]]) -> int:
        ...

    @abstractmethod
    def _delete_row(self, kind: str, entity_id: str) -> bool:
        ...

    @abstractmethod
    def _detach_reference(self, model: str, field_name: str, is_list: bool, entity_id: str) -> None:
        ...
