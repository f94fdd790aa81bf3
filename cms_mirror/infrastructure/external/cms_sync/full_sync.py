"""
Full sync: carga completa de cada tipo de entidad del catálogo.

Por tipo: GET de la colección completa -> un único create() (upsert) en el store.
Un tipo que falla no impide intentar los demás (aislar y continuar). El driver
no deduplica: reintentar un full sync puede re-enviar creates de tipos ya
cargados, y el upsert del store lo absorbe.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger

from cms_mirror.shared.exceptions.sync import CmsApiError, UnknownEntityKindError

from .cms_client import CmsClient
from .entity_catalog import CatalogSnapshot
from .types import EntityDescriptor, PhaseReport, SyncFailure

FULL_SYNC_PHASE = "full_sync"


def _sync_entity_kind(
    descriptor: EntityDescriptor,
    *,
    client: CmsClient,
    models: Mapping[str, Any],
) -> tuple[int, Optional[SyncFailure]]:
    """Fetch + create de un tipo. Retorna (instancias, fallo o None)."""
    try:
        model = models.get(descriptor.name)
        if model is None:
            raise UnknownEntityKindError(descriptor.name)

        entities = client.fetch_list(descriptor)
        if not isinstance(entities, list):
            raise CmsApiError(
                f"La colección de {descriptor.name} no es un array",
                url=descriptor.list_url,
            )

        logger.info(f"  -> {descriptor.name} ({len(entities)})")
        model.create(entities)
        return len(entities), None
    except Exception as e:
        logger.error(f"Full sync de {descriptor.name} falló: {e}")
        return 0, SyncFailure(error=str(e), entity_kind=descriptor.name)


def run_full_sync(
    client: CmsClient,
    catalog: Union[CatalogSnapshot, Iterable[EntityDescriptor]],
    models: Mapping[str, Any],
    *,
    max_workers: int = 1,
) -> PhaseReport:
    """
    Ejecuta el full sync para todos los tipos del catálogo.

    Con max_workers > 1 los tipos se cargan en paralelo (son independientes);
    el reporte se arma siempre en orden del catálogo.
    """
    entities = list(catalog.entities if isinstance(catalog, CatalogSnapshot) else catalog)
    report = PhaseReport(phase=FULL_SYNC_PHASE)

    logger.info("Obteniendo todos los datos del CMS")

    sync_one = partial(_sync_entity_kind, client=client, models=models)
    if max_workers > 1 and len(entities) > 1:
        with ThreadPoolExecutor(
            max_workers=min(max_workers, len(entities)),
            thread_name_prefix="full-sync-",
        ) as executor:
            outcomes = list(executor.map(sync_one, entities))
    else:
        outcomes = [sync_one(descriptor) for descriptor in entities]

    for descriptor, (count, failure) in zip(entities, outcomes):
        if failure is not None:
            report.add_failure(failure)
            continue
        report.counts[descriptor.name] = count
        report.processed += count

    logger.info(
        f"Full sync del CMS finalizado: {report.processed} entidades, "
        f"{len(report.failures)} tipos con error"
    )
    return report.finish()
