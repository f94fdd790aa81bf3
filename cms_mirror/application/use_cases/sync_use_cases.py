"""
Casos de uso del mirror CMS -> model store.

Flujo de una sesión:
1. Discovery (entity map + schema). Si falla, la sesión aborta sin tocar el store.
2. Definición de modelos (schema mapper por tipo).
3. Full sync (una vez).
4. Change sync (repetido, p.ej. en un poll loop).

Cada pase corre bajo el session_lock del store: nunca hay dos pases de sync
simultáneos sobre el mismo store. El change sync exige un full sync completo
previo en la misma sesión.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from loguru import logger

from cms_mirror.core.config import Settings
from cms_mirror.infrastructure.external.cms_sync.change_sync import CHANGE_SYNC_PHASE, apply_changes
from cms_mirror.infrastructure.external.cms_sync.cms_client import CmsClient
from cms_mirror.infrastructure.external.cms_sync.entity_catalog import CatalogSnapshot, EntityCatalog
from cms_mirror.infrastructure.external.cms_sync.full_sync import FULL_SYNC_PHASE, run_full_sync
from cms_mirror.infrastructure.external.cms_sync.schema_mapper import map_fields, unresolved_references
from cms_mirror.infrastructure.external.cms_sync.types import ModelField, PhaseReport, SyncFailure
from cms_mirror.infrastructure.stores.base import BaseModelStore
from cms_mirror.infrastructure.stores.factory import build_store
from cms_mirror.shared.exceptions.sync import (
    CmsApiError,
    DiscoveryError,
    SyncInProgressError,
    SyncOrderError,
)


class CmsSyncUseCases:
    """
    Orquestador de una sesión de sync para un store.
    """

    def __init__(
        self,
        *,
        client: CmsClient,
        store: BaseModelStore,
        full_sync_max_workers: int = 1,
    ) -> None:
        self._client = client
        self._store = store
        self._catalog = EntityCatalog(client)
        self._full_sync_max_workers = full_sync_max_workers
        self._snapshot: Optional[CatalogSnapshot] = None
        self._full_sync_completed = False

    @property
    def store(self) -> BaseModelStore:
        return self._store

    @property
    def snapshot(self) -> Optional[CatalogSnapshot]:
        return self._snapshot

    @property
    def full_sync_completed(self) -> bool:
        return self._full_sync_completed

    def discover(self) -> CatalogSnapshot:
        """Fetch nuevo del catálogo (sin cache entre llamadas)."""
        return self._catalog.discover()

    def define_models(
        self, snapshot: CatalogSnapshot
    ) -> tuple[Dict[str, Dict[str, ModelField]], list[SyncFailure]]:
        """
        Define un modelo por tipo de entidad a partir de su schema.

        Las referencias sin tipo destino resoluble se definen igual (degradado).
        Un tipo cuyo modelo no se puede definir en el store se reporta como
        fallo y el resto de los tipos sigue adelante.

        Returns:
            (campos por tipo definido, fallos por tipo)
        """
        definitions: Dict[str, Dict[str, ModelField]] = {}
        failures: list[SyncFailure] = []
        for descriptor in snapshot.entities:
            fields = map_fields(snapshot.fields_for(descriptor.name))
            for field_name in unresolved_references(fields):
                logger.warning(
                    f"{descriptor.name}.{field_name}: referencia sin discriminador de tipo; "
                    f"se define sin tipo destino"
                )
            try:
                self._store.define_model(descriptor.name, fields)
            except Exception as e:
                logger.error(f"No se pudo definir el modelo {descriptor.name}: {e}")
                failures.append(SyncFailure(error=str(e), entity_kind=descriptor.name))
                continue
            definitions[descriptor.name] = fields
            logger.debug(f"Modelo definido: {descriptor.name} ({len(fields)} campos)")
        return definitions, failures

    def run_full_sync(self) -> PhaseReport:
        """
        Discovery + definición de modelos + carga completa.

        Returns:
            PhaseReport: aborted si falló el discovery o el store (conexión/lock),
            skipped si otro pase tenía el lock
        """
        try:
            with self._store.session_lock():
                try:
                    snapshot = self.discover()
                except DiscoveryError as e:
                    logger.error(f"Discovery del CMS falló, se aborta la sesión: {e.message}")
                    return PhaseReport(phase=FULL_SYNC_PHASE, aborted=True, error=e.message).finish()

                self._snapshot = snapshot
                definitions, failures = self.define_models(snapshot)
                # Solo se cargan los tipos con modelo definido en esta sesión
                entities = [e for e in snapshot.entities if e.name in definitions]
                report = run_full_sync(
                    self._client,
                    entities,
                    self._store.models,
                    max_workers=self._full_sync_max_workers,
                )
                report.failures = failures + report.failures
                self._full_sync_completed = True
                return report
        except SyncInProgressError as e:
            logger.warning(f"{e.message}. Saliendo.")
            return PhaseReport(phase=FULL_SYNC_PHASE, skipped=True, error=e.message).finish()
        except Exception as e:
            logger.error(f"Full sync abortado por error del store: {e}")
            return PhaseReport(phase=FULL_SYNC_PHASE, aborted=True, error=str(e)).finish()

    def run_change_sync(self) -> PhaseReport:
        """
        Trae el change feed y lo aplica en orden.

        Raises:
            SyncOrderError: si todavía no se completó un full sync en esta sesión
        """
        if not self._full_sync_completed:
            raise SyncOrderError()

        try:
            with self._store.session_lock():
                logger.info("Obteniendo cambios del CMS")
                try:
                    changes = self._client.fetch_changes()
                except CmsApiError as e:
                    logger.error(f"No se pudo obtener el change feed: {e.message}")
                    return PhaseReport(phase=CHANGE_SYNC_PHASE, aborted=True, error=e.message).finish()

                if not isinstance(changes, list):
                    message = "El change feed del CMS no es un array"
                    logger.error(message)
                    return PhaseReport(phase=CHANGE_SYNC_PHASE, aborted=True, error=message).finish()

                return apply_changes(changes, self._store.models)
        except SyncInProgressError as e:
            logger.warning(f"{e.message}. Saliendo.")
            return PhaseReport(phase=CHANGE_SYNC_PHASE, skipped=True, error=e.message).finish()
        except Exception as e:
            logger.error(f"Change sync abortado por error del store: {e}")
            return PhaseReport(phase=CHANGE_SYNC_PHASE, aborted=True, error=str(e)).finish()

    def run(
        self,
        *,
        poll_interval_s: float,
        max_iterations: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> list[PhaseReport]:
        """
        Full sync y luego poll loop de change syncs.

        Termina al alcanzar max_iterations, al setearse stop_event o si el
        full sync aborta.
        """
        full_report = self.run_full_sync()
        logger.info(full_report.summary())
        if not self._full_sync_completed:
            return [full_report]

        return [full_report] + self.poll_changes(
            poll_interval_s=poll_interval_s,
            max_iterations=max_iterations,
            stop_event=stop_event,
        )

    def poll_changes(
        self,
        *,
        poll_interval_s: float,
        max_iterations: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> list[PhaseReport]:
        """
        Poll loop de change syncs (espera poll_interval_s antes de cada pase).

        Raises:
            SyncOrderError: si todavía no se completó un full sync en esta sesión
        """
        if not self._full_sync_completed:
            raise SyncOrderError()

        stop_event = stop_event or threading.Event()
        reports: list[PhaseReport] = []
        iteration = 0
        while not stop_event.is_set():
            if max_iterations is not None and iteration >= max_iterations:
                break
            if stop_event.wait(poll_interval_s):
                break
            report = self.run_change_sync()
            reports.append(report)
            logger.info(report.summary())
            iteration += 1

        return reports


def build_from_settings(settings: Settings) -> CmsSyncUseCases:
    """
    Constructor "oficial" de la sesión a partir de la configuración.
    """
    client = CmsClient(
        settings.CMS_API_URL,
        entity_map_path=settings.CMS_ENTITY_MAP_PATH,
        schema_path=settings.CMS_SCHEMA_PATH,
        changes_path=settings.CMS_CHANGES_PATH,
        timeout_s=settings.CMS_TIMEOUT_S,
        max_retries=settings.CMS_MAX_RETRIES,
        min_backoff_s=settings.CMS_MIN_BACKOFF_S,
        max_backoff_s=settings.CMS_MAX_BACKOFF_S,
    )
    store = build_store(settings)
    return CmsSyncUseCases(
        client=client,
        store=store,
        full_sync_max_workers=settings.FULL_SYNC_MAX_WORKERS,
    )
