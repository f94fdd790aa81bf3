"""
Excepciones del pipeline de sincronización CMS -> model store.

Taxonomía:
- Fatales para la sesión: DiscoveryError (antes de mutar el store).
- Fatales para un solo item: UnknownEntityKindError, InvalidChangeRecordError,
  InvalidEntityError. Se reportan y el pase continúa.
- Control de concurrencia/orden: SyncInProgressError, SyncOrderError.
"""
from typing import Any, Optional

from cms_mirror.shared.exceptions.base import AppException


class CmsApiError(AppException):
    """Error de integración HTTP con la API del CMS."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CMS_API_ERROR",
            details={"status_code": status_code, "url": url}
        )
        self.status_code = status_code
        self.url = url


class DiscoveryError(AppException):
    """Catálogo o schema del CMS inaccesible o malformado."""

    def __init__(self, message: str, details=None):
        super().__init__(
            message=message,
            error_code="DISCOVERY_ERROR",
            details=details
        )


class InvalidEntityError(AppException):
    """Instancia de entidad sin 'id' (no se puede hacer upsert/delete)."""

    def __init__(self, entity_kind: str, message: str = "La entidad no contiene 'id'"):
        super().__init__(
            message=f"{entity_kind}: {message}",
            error_code="INVALID_ENTITY",
            details={"entity_kind": entity_kind}
        )
        self.entity_kind = entity_kind


class UnknownEntityKindError(AppException):
    """Registro de cambio que nombra un tipo de entidad sin modelo definido."""

    def __init__(self, entity_kind: Any):
        super().__init__(
            message=f"Tipo de entidad desconocido: '{entity_kind}' (drift de catálogo/schema)",
            error_code="UNKNOWN_ENTITY_KIND",
            details={"entity_kind": str(entity_kind)}
        )
        self.entity_kind = entity_kind


class InvalidChangeRecordError(AppException):
    """Item del change feed que no cumple el formato esperado."""

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="INVALID_CHANGE_RECORD",
            details={"position": position}
        )
        self.position = position


class SyncInProgressError(AppException):
    """Otro pase de sync tiene tomado el lock del store."""

    def __init__(self, store_name: str):
        super().__init__(
            message=f"Sync ya está corriendo sobre el store '{store_name}'",
            error_code="SYNC_IN_PROGRESS",
            details={"store": store_name}
        )


class SyncOrderError(AppException):
    """Change sync solicitado antes de completar el full sync de la sesión."""

    def __init__(self, message: str = "El full sync debe completarse antes del change sync"):
        super().__init__(
            message=message,
            error_code="SYNC_ORDER_ERROR"
        )
