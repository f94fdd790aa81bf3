"""
Lectura del schema OpenAPI/Swagger publicado por el CMS.

El documento puede traer $ref locales (y ciclos: UserEntity -> PageEntity ->
UserEntity). Los $ref se resuelven de a un nodo, solo cuando se necesitan, así
que un grafo cíclico nunca provoca recursión: de una relación solo se guarda el
nombre del tipo referenciado.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from cms_mirror.shared.exceptions.sync import DiscoveryError

from .types import REFERENCE_LIST_TYPE, REFERENCE_TYPE, FieldDescriptor

SCHEMA_PREFIX = "Schema_"
DISCRIMINATOR_FIELD = "type"

# Límite de saltos al seguir cadenas de $ref
_MAX_REF_HOPS = 32


def _unescape_pointer_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


class SchemaDocument:
    """Documento de schema con resolución perezosa de $ref locales."""

    def __init__(self, raw: Any) -> None:
        if not isinstance(raw, dict):
            raise DiscoveryError("El schema del CMS no es un objeto JSON")

        definitions = raw.get("definitions")
        if definitions is None:
            definitions = (raw.get("components") or {}).get("schemas")
        if not isinstance(definitions, dict):
            raise DiscoveryError(
                "El schema del CMS no contiene 'definitions' ni 'components.schemas'"
            )

        self._raw = raw
        self._definitions: Dict[str, Any] = definitions

    @property
    def definition_names(self) -> list[str]:
        return list(self._definitions.keys())

    def _lookup_pointer(self, ref: str) -> Any:
        if not ref.startswith("#"):
            # Solo soportamos referencias locales
            return None
        node: Any = self._raw
        for token in ref.lstrip("#").split("/"):
            if not token:
                continue
            token = _unescape_pointer_token(token)
            if isinstance(node, dict):
                node = node.get(token)
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                return None
        return node

    def resolve(self, node: Any) -> Any:
        """Sigue $ref hasta llegar a un nodo concreto (o None si no resuelve)."""
        seen: set[str] = set()
        for _ in range(_MAX_REF_HOPS):
            if not isinstance(node, dict) or "$ref" not in node:
                return node
            ref = node["$ref"]
            if not isinstance(ref, str) or ref in seen:
                return None
            seen.add(ref)
            node = self._lookup_pointer(ref)
        return None

    def properties_for(self, entity_name: str) -> Dict[str, Any]:
        """Propiedades crudas de Schema_<entidad>; {} si no existe."""
        definition = self.resolve(self._definitions.get(f"{SCHEMA_PREFIX}{entity_name}"))
        if not isinstance(definition, dict):
            return {}
        properties = self.resolve(definition.get("properties"))
        return properties if isinstance(properties, dict) else {}

    def field_descriptors(self, entity_name: str) -> Dict[str, FieldDescriptor]:
        return parse_properties(self.properties_for(entity_name), self)


def _declared_type(node: Dict[str, Any]) -> Optional[str]:
    declared = node.get("type")
    if isinstance(declared, list):
        # ["string", "null"] -> "string"
        declared = next((t for t in declared if isinstance(t, str) and t != "null"), None)
    if isinstance(declared, str) and declared:
        return declared
    if "properties" in node:
        return REFERENCE_TYPE
    if "items" in node:
        return REFERENCE_LIST_TYPE
    return None


def discriminator_of(properties: Any, document: Optional[SchemaDocument] = None) -> Optional[str]:
    """
    Nombre del tipo referenciado: el literal del campo 'type' de las propiedades
    anidadas (const, o enum de un solo valor).
    """
    if document is not None:
        properties = document.resolve(properties)
    if not isinstance(properties, dict):
        return None

    tag = properties.get(DISCRIMINATOR_FIELD)
    if document is not None:
        tag = document.resolve(tag)
    if not isinstance(tag, dict):
        return None

    const = tag.get("const")
    if isinstance(const, str) and const:
        return const
    enum = tag.get("enum")
    if isinstance(enum, list) and len(enum) == 1 and isinstance(enum[0], str):
        return enum[0]
    return None


def parse_field_descriptor(
    name: str,
    raw: Any,
    document: Optional[SchemaDocument] = None,
) -> Optional[FieldDescriptor]:
    """
    Convierte una propiedad cruda del schema en FieldDescriptor.

    Retorna None si la propiedad está malformada (sin tipo reconocible).
    """
    node = document.resolve(raw) if document is not None else raw
    if not isinstance(node, dict):
        return None

    declared = _declared_type(node)
    if declared is None:
        return None

    if declared == REFERENCE_TYPE:
        return FieldDescriptor(
            name=name,
            type=REFERENCE_TYPE,
            refers_to=discriminator_of(node.get("properties"), document),
        )

    if declared == REFERENCE_LIST_TYPE:
        items = node.get("items")
        if document is not None:
            items = document.resolve(items)
        item_properties = items.get("properties") if isinstance(items, dict) else None
        return FieldDescriptor(
            name=name,
            type=REFERENCE_LIST_TYPE,
            refers_to=discriminator_of(item_properties, document),
        )

    return FieldDescriptor(name=name, type=declared)


def parse_properties(
    properties: Mapping[str, Any],
    document: Optional[SchemaDocument] = None,
) -> Dict[str, FieldDescriptor]:
    """Parsea todas las propiedades, omitiendo las malformadas."""
    fields: Dict[str, FieldDescriptor] = {}
    for name, raw in properties.items():
        descriptor = parse_field_descriptor(name, raw, document)
        if descriptor is not None:
            fields[name] = descriptor
    return fields
