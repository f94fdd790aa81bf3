"""
Casos de uso de la aplicacion.
"""
from .sync_use_cases import CmsSyncUseCases, build_from_settings

__all__ = ["CmsSyncUseCases", "build_from_settings"]
