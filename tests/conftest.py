"""
Configuración de fixtures para pytest.

Datos de ejemplo equivalentes al CMS mock: 1 usuario y 6 páginas, con
referencias cruzadas (UserEntity.authoredPages <-> PageEntity.author).
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import pytest

from cms_mirror.infrastructure.external.cms_sync.types import EntityDescriptor
from cms_mirror.infrastructure.stores.memory_store import InMemoryModelStore
from cms_mirror.shared.exceptions.sync import CmsApiError


BASE_URL = "http://cms.test"

ENTITY_MAP = [
    {
        "entityName": "UserEntity",
        "singlePath": "/entity/single/UserEntity/:id",
        "listPath": "/entity/list/UserEntity/",
    },
    {
        "entityName": "PageEntity",
        "singlePath": "/entity/single/PageEntity/:id",
        "listPath": "/entity/list/PageEntity/",
    },
]

# Schema con $ref cíclicos (User -> Page -> User), como lo publica el CMS
SCHEMA_DOC = {
    "swagger": "2.0",
    "definitions": {
        "Schema_UserEntity": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "username": {"type": "string"},
                "email": {"type": "string"},
                "password": {"type": "string"},
                "authoredPages": {
                    "type": "array",
                    "items": {"$ref": "#/definitions/Schema_PageEntity"},
                },
                "type": {"type": "string", "const": "UserEntity"},
            },
        },
        "Schema_PageEntity": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "path": {"type": "string"},
                "description": {"type": "string"},
                "title": {"type": "string"},
                "author": {"$ref": "#/definitions/Schema_UserEntity"},
                "type": {"type": "string", "const": "PageEntity"},
            },
        },
    },
}


def make_page(page_id: str, title: str) -> Dict[str, Any]:
    return {
        "id": page_id,
        "type": "PageEntity",
        "path": f"/page/{page_id}",
        "description": f"Descripcion {page_id}",
        "title": title,
        "author": {"id": "1", "type": "UserEntity"},
    }


def initial_state() -> Dict[str, List[Dict[str, Any]]]:
    pages = [make_page("1", "Hello world")] + [
        make_page(str(i), f"Pagina {i}") for i in range(2, 7)
    ]
    user = {
        "id": "1",
        "type": "UserEntity",
        "username": "Tyler",
        "email": "tyler@example.com",
        "password": "oh noe",
        "authoredPages": [{"id": p["id"]} for p in pages],
    }
    return {"UserEntity": [user], "PageEntity": pages}


class FakeCmsClient:
    """
    Cliente CMS en memoria: mismo contrato que CmsClient, sin HTTP.
    Registra las llamadas para verificar cantidad/orden de fetches.
    """

    def __init__(
        self,
        *,
        entity_map: Any = None,
        schema: Any = None,
        state: Optional[Dict[str, Any]] = None,
        change_batches: Optional[List[Any]] = None,
    ) -> None:
        self.base_url = BASE_URL
        self.entity_map = copy.deepcopy(ENTITY_MAP) if entity_map is None else entity_map
        self.schema = copy.deepcopy(SCHEMA_DOC) if schema is None else schema
        self.state = initial_state() if state is None else state
        self.change_batches = list(change_batches or [])
        self.fail_lists: set[str] = set()
        self.fail_discovery = False
        self.fail_changes = False
        self.calls: List[str] = []

    def fetch_entity_map(self) -> Any:
        self.calls.append("entity_map")
        if self.fail_discovery:
            raise CmsApiError("CMS caído", status_code=503, url=f"{BASE_URL}/entity-map")
        return copy.deepcopy(self.entity_map)

    def fetch_schema(self) -> Any:
        self.calls.append("schema")
        return copy.deepcopy(self.schema)

    def fetch_list(self, descriptor: EntityDescriptor) -> Any:
        self.calls.append(f"list:{descriptor.name}")
        if descriptor.name in self.fail_lists:
            raise CmsApiError("error 500", status_code=500, url=descriptor.list_url)
        return copy.deepcopy(self.state.get(descriptor.name, []))

    def fetch_changes(self) -> Any:
        self.calls.append("changes")
        if self.fail_changes:
            raise CmsApiError("error 502", status_code=502, url=f"{BASE_URL}/changed-entities")
        if not self.change_batches:
            return []
        return copy.deepcopy(self.change_batches.pop(0))


@pytest.fixture
def schema_doc() -> Dict[str, Any]:
    return copy.deepcopy(SCHEMA_DOC)


@pytest.fixture
def fake_client() -> FakeCmsClient:
    return FakeCmsClient()


@pytest.fixture
def memory_store() -> InMemoryModelStore:
    return InMemoryModelStore()


@pytest.fixture
def descriptors() -> list[EntityDescriptor]:
    return [
        EntityDescriptor(
            name=item["entityName"],
            single_path=item["singlePath"],
            list_path=item["listPath"],
            base_url=BASE_URL,
        )
        for item in ENTITY_MAP
    ]
