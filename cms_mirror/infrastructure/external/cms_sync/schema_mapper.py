"""
Schema mapper: FieldDescriptor (schema del CMS) -> ModelField (store destino).

Función pura: misma entrada, misma salida; no hace I/O ni logging.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from .types import ID_FIELD, FieldDescriptor, ModelField


def to_model_field(descriptor: FieldDescriptor) -> ModelField:
    """Mapea un descriptor: relaciones -> referencia (lista o simple), resto -> escalar."""
    if descriptor.is_reference:
        return ModelField(
            target_type=descriptor.refers_to,
            is_list=descriptor.is_list,
            is_reference=True,
        )
    return ModelField(target_type=descriptor.type)


def map_fields(descriptors: Mapping[str, Optional[FieldDescriptor]]) -> Dict[str, ModelField]:
    """
    Convierte los descriptores de un tipo de entidad en campos del modelo.

    Reglas:
    - 'id' se descarta siempre (identidad implícita del store)
    - descriptores ausentes o malformados se omiten
    - una referencia sin discriminador queda con target_type=None
    """
    fields: Dict[str, ModelField] = {}
    for name, descriptor in descriptors.items():
        if name == ID_FIELD:
            continue
        if not isinstance(descriptor, FieldDescriptor) or not descriptor.type:
            continue
        fields[name] = to_model_field(descriptor)
    return fields


def unresolved_references(fields: Mapping[str, ModelField]) -> list[str]:
    """Campos de referencia cuyo tipo destino no se pudo resolver."""
    return [name for name, f in fields.items() if f.is_reference and f.target_type is None]
