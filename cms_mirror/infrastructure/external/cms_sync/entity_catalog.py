"""
Catálogo de entidades del CMS.

Combina dos documentos de la fuente:
- entity map: qué tipos de entidad existen y dónde traerlos
- schema: qué atributos declara cada tipo (Schema_<entidad>)

Cada discover() es un fetch nuevo e independiente; el snapshot resultante es
inmutable durante la sesión.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from loguru import logger
from pydantic import ValidationError

from cms_mirror.shared.exceptions.sync import CmsApiError, DiscoveryError

from .cms_client import CmsClient
from .schema_parser import SchemaDocument
from .types import EntityDescriptor, EntityRoute, FieldDescriptor


@dataclass(frozen=True)
class CatalogSnapshot:
    """Resultado de discover(): descriptores en orden del catálogo + schema."""

    entities: tuple[EntityDescriptor, ...]
    schema: SchemaDocument

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.entities]

    def fields_for(self, entity_name: str) -> Dict[str, FieldDescriptor]:
        """Descriptores de campos del tipo; {} si el schema no lo declara."""
        return self.schema.field_descriptors(entity_name)


def parse_entity_map(raw: Any, *, base_url: str = "") -> tuple[EntityDescriptor, ...]:
    """
    Valida el entity map y construye los descriptores.

    Raises:
        DiscoveryError: si no es una lista, un item es inválido o hay nombres repetidos
    """
    if not isinstance(raw, list):
        raise DiscoveryError("El entity map del CMS no es una lista")

    descriptors: list[EntityDescriptor] = []
    seen: set[str] = set()
    for position, item in enumerate(raw):
        try:
            route = EntityRoute.model_validate(item)
        except ValidationError as e:
            raise DiscoveryError(
                f"Entrada {position} del entity map inválida: {e}",
                details={"position": position},
            ) from e

        if route.entity_name in seen:
            raise DiscoveryError(f"Entidad duplicada en el entity map: {route.entity_name}")
        seen.add(route.entity_name)

        descriptors.append(
            EntityDescriptor(
                name=route.entity_name,
                single_path=route.single_path,
                list_path=route.list_path,
                base_url=base_url,
            )
        )
    return tuple(descriptors)


class EntityCatalog:
    """Descubre los tipos de entidad y su schema desde el CMS."""

    def __init__(self, client: CmsClient) -> None:
        self._client = client

    def discover(self) -> CatalogSnapshot:
        """
        Trae entity map + schema.

        Raises:
            DiscoveryError: si cualquiera de los dos documentos es inaccesible o malformado
        """
        try:
            raw_map = self._client.fetch_entity_map()
            raw_schema = self._client.fetch_schema()
        except CmsApiError as e:
            raise DiscoveryError(f"No se pudo obtener el catálogo del CMS: {e.message}") from e

        entities = parse_entity_map(raw_map, base_url=self._client.base_url)
        schema = SchemaDocument(raw_schema)

        for descriptor in entities:
            if not schema.properties_for(descriptor.name):
                logger.warning(
                    f"Schema_{descriptor.name} no encontrado en el schema; "
                    f"el modelo se define sin campos extra"
                )

        logger.info(f"Catálogo CMS: {len(entities)} tipos de entidad ({', '.join(e.name for e in entities)})")
        return CatalogSnapshot(entities=entities, schema=schema)
