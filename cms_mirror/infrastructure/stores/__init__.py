"""
Model stores destino del mirror CMS (memoria y PostgreSQL).
"""
from cms_mirror.infrastructure.stores.base import BaseModelStore, ModelHandle
from cms_mirror.infrastructure.stores.memory_store import InMemoryModelStore


__all__ = [
    "BaseModelStore",
    "ModelHandle",
    "InMemoryModelStore",
]
