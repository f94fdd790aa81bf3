"""
Tipos y utilidades puras para el pipeline CMS -> model store.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field, field_validator

# Tipos de FieldDescriptor que representan relaciones
REFERENCE_TYPE = "object"
REFERENCE_LIST_TYPE = "array"

ID_FIELD = "id"


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Un tipo de entidad expuesto por el CMS y sus dos endpoints.

    - single_path: template con placeholder de id (":id" o "{id}")
    - list_path: endpoint de la colección completa
    """

    name: str
    single_path: str
    list_path: str
    base_url: str = ""

    @property
    def list_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.list_path}"

    def single_url(self, entity_id: Any) -> str:
        """URL para traer una instancia, con el id escapado."""
        quoted = quote(str(entity_id), safe="")
        path = self.single_path.replace(":id", quoted).replace("{id}", quoted)
        return f"{self.base_url.rstrip('/')}{path}"


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Atributo de un tipo de entidad tal como lo declara el schema del CMS.

    - type: tipo primitivo ("string", "number", "boolean"...) o marcador de
      relación ("object" = referencia simple, "array" = lista de referencias)
    - refers_to: tipo de entidad referenciado (solo relaciones). Se resuelve
      una sola vez al parsear el schema; None si el schema no lo declara.
    """

    name: str
    type: str
    refers_to: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.type in (REFERENCE_TYPE, REFERENCE_LIST_TYPE)

    @property
    def is_list(self) -> bool:
        return self.type == REFERENCE_LIST_TYPE


@dataclass(frozen=True)
class ModelField:
    """
    Definición de campo en el store destino, derivada de un FieldDescriptor.

    target_type es el tipo primitivo o el nombre del tipo de entidad
    referenciado (None si la referencia no se pudo resolver).
    """

    target_type: Optional[str]
    is_list: bool = False
    is_reference: bool = False

    @property
    def is_resolved_reference(self) -> bool:
        """Referencia con tipo destino conocido (se guarda como id / lista de ids)."""
        return self.is_reference and self.target_type is not None


class ChangeOperation(str, Enum):
    """Operaciones del change feed."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityRoute(BaseModel):
    """Item del endpoint de descubrimiento (entity map)."""

    entity_name: str = Field(..., alias="entityName", min_length=1)
    single_path: str = Field(..., alias="singlePath")
    list_path: str = Field(..., alias="listPath")

    class Config:
        populate_by_name = True


class ChangeRecord(BaseModel):
    """
    Registro del change feed: {type, entityType, entity}.

    Para create/update el payload es la instancia completa; para delete
    solo trae el id. En ambos casos 'id' es obligatorio.
    """

    operation: ChangeOperation = Field(..., alias="type")
    entity_kind: str = Field(..., alias="entityType", min_length=1)
    payload: Dict[str, Any] = Field(..., alias="entity")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("payload")
    @classmethod
    def payload_must_have_id(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if v.get(ID_FIELD) in (None, ""):
            raise ValueError("el payload del cambio no contiene 'id'")
        return v

    @property
    def entity_id(self) -> str:
        return str(self.payload[ID_FIELD])


@dataclass(frozen=True)
class SyncFailure:
    """Fallo soft de un item (tipo de entidad o registro de cambio)."""

    error: str
    entity_kind: Optional[str] = None
    entity_id: Optional[str] = None
    position: Optional[int] = None


@dataclass
class PhaseReport:
    """
    Resultado de una fase (full_sync / change_sync).

    - aborted: fallo duro (p.ej. discovery); no se mutó el store
    - skipped: otro pase tenía el lock, no se ejecutó nada
    - failures: fallos soft por item; la fase siguió adelante
    """

    phase: str
    aborted: bool = False
    skipped: bool = False
    error: Optional[str] = None
    processed: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    failures: list[SyncFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.skipped and not self.failures

    def add_failure(self, failure: SyncFailure) -> None:
        self.failures.append(failure)

    def finish(self) -> "PhaseReport":
        self.finished_at = utc_now()
        return self

    def summary(self) -> str:
        if self.aborted:
            return f"{self.phase}: abortado ({self.error})"
        if self.skipped:
            return f"{self.phase}: omitido ({self.error})"
        return f"{self.phase}: procesados={self.processed}, fallos={len(self.failures)}"
