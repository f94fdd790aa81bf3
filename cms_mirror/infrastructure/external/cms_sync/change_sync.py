"""
Change sync: aplica un batch del change feed al store, en el orden recibido.

Política:
- create y update se unifican: ambos llaman create() del store (upsert por id).
  El CMS solo los distingue a nivel de log.
- delete llama delete() con el holder del id; limpiar referencias inversas es
  responsabilidad del store.
- Un registro por llamada al store, sin deduplicar ni reordenar: con updates
  rápidos al mismo id gana la última escritura.
- Un tipo de entidad sin modelo falla solo ese registro (se reporta, no se
  descarta en silencio) y el resto del batch se sigue aplicando.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger
from pydantic import ValidationError

from cms_mirror.shared.exceptions.sync import InvalidChangeRecordError, UnknownEntityKindError

from .types import ChangeOperation, ChangeRecord, PhaseReport, SyncFailure

CHANGE_SYNC_PHASE = "change_sync"


def parse_change_record(raw: Any, position: Optional[int] = None) -> ChangeRecord:
    """
    Valida un item crudo del change feed ({type, entityType, entity}).

    Raises:
        InvalidChangeRecordError: operación desconocida, tipo ausente o payload sin id
    """
    try:
        return ChangeRecord.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InvalidChangeRecordError(
            f"Cambio #{position} inválido: {problems}", position=position
        ) from e


def _describe_raw(raw: Any) -> tuple[Optional[str], Optional[str]]:
    """Tipo e id de un item crudo, para reportar fallos de parseo."""
    if not isinstance(raw, Mapping):
        return None, None
    kind = raw.get("entityType")
    entity = raw.get("entity")
    entity_id = entity.get("id") if isinstance(entity, Mapping) else None
    return (
        str(kind) if kind is not None else None,
        str(entity_id) if entity_id is not None else None,
    )


def apply_change(record: ChangeRecord, models: Mapping[str, Any]) -> None:
    """Aplica un registro: una sola llamada al store."""
    model = models.get(record.entity_kind)
    if model is None:
        raise UnknownEntityKindError(record.entity_kind)

    operation = record.operation.value
    logger.info(f'  -> {operation}d {record.entity_kind} "{record.entity_id}"')

    if record.operation in (ChangeOperation.CREATE, ChangeOperation.UPDATE):
        model.create(record.payload)
    else:
        model.delete(record.payload)


def apply_changes(
    changes: Iterable[Union[ChangeRecord, Mapping[str, Any]]],
    models: Mapping[str, Any],
) -> PhaseReport:
    """
    Aplica el batch completo en orden. Los fallos por registro se acumulan en
    el reporte y no detienen el resto del batch.
    """
    report = PhaseReport(phase=CHANGE_SYNC_PHASE)
    operations: Counter[str] = Counter()

    logger.info("Aplicando cambios del CMS")

    for position, item in enumerate(changes):
        record: Optional[ChangeRecord] = None
        try:
            record = item if isinstance(item, ChangeRecord) else parse_change_record(item, position)
            apply_change(record, models)
        except Exception as e:
            if record is not None:
                kind, entity_id = record.entity_kind, record.entity_id
            else:
                kind, entity_id = _describe_raw(item)
            message = e.message if isinstance(e, (UnknownEntityKindError, InvalidChangeRecordError)) else str(e)
            logger.error(f"Cambio #{position} ({kind} \"{entity_id}\") no aplicado: {message}")
            report.add_failure(
                SyncFailure(error=message, entity_kind=kind, entity_id=entity_id, position=position)
            )
            continue

        report.processed += 1
        operations[record.operation.value] += 1

    report.counts = dict(operations)
    logger.info(
        f"Cambios del CMS aplicados: {report.processed}, fallidos: {len(report.failures)}"
    )
    return report.finish()
