"""
Tests unitarios para el model store en memoria.
"""
from __future__ import annotations

import pytest

from cms_mirror.infrastructure.external.cms_sync.types import ModelField
from cms_mirror.infrastructure.stores.base import extract_id, normalize_reference
from cms_mirror.shared.exceptions.sync import (
    InvalidEntityError,
    SyncInProgressError,
    UnknownEntityKindError,
)


USER_FIELDS = {
    "username": ModelField(target_type="string"),
    "authoredPages": ModelField(target_type="PageEntity", is_list=True, is_reference=True),
}
PAGE_FIELDS = {
    "title": ModelField(target_type="string"),
    "author": ModelField(target_type="UserEntity", is_reference=True),
}


@pytest.fixture
def store(memory_store):
    memory_store.define_model("UserEntity", USER_FIELDS)
    memory_store.define_model("PageEntity", PAGE_FIELDS)
    return memory_store


class TestReferenceHelpers:
    """Tests para extract_id / normalize_reference."""

    @pytest.mark.parametrize(
        "value,expected",
        [({"id": "1", "type": "UserEntity"}, "1"), ({"id": 5}, "5"), ("7", "7"), (None, None), ({}, None), (True, None)],
    )
    def test_extract_id(self, value, expected) -> None:
        assert extract_id(value) == expected

    def test_normalize_reference_list(self) -> None:
        assert normalize_reference([{"id": "1"}, "2", {"title": "sin id"}], is_list=True) == ["1", "2"]
        assert normalize_reference(None, is_list=True) == []
        assert normalize_reference({"id": "3"}, is_list=True) == ["3"]

    def test_normalize_reference_single(self) -> None:
        assert normalize_reference({"id": "1"}, is_list=False) == "1"


class TestDefineModel:
    """Tests para define_model()."""

    def test_returns_handle_registered_in_models(self, memory_store) -> None:
        handle = memory_store.define_model("UserEntity", USER_FIELDS)

        assert memory_store.models == {"UserEntity": handle}
        assert handle.name == "UserEntity"
        assert memory_store.fields_of("UserEntity") == USER_FIELDS

    def test_redefine_is_idempotent(self, memory_store) -> None:
        first = memory_store.define_model("UserEntity", USER_FIELDS)
        first.create({"id": "1", "username": "tyler"})

        second = memory_store.define_model("UserEntity", USER_FIELDS)

        assert first is second
        assert memory_store.count("UserEntity") == 1

    def test_unknown_kind(self, memory_store) -> None:
        with pytest.raises(UnknownEntityKindError):
            memory_store.fields_of("GhostEntity")


class TestUpsert:
    """Tests para create() (upsert por id)."""

    def test_single_and_collection(self, store) -> None:
        pages = store.models["PageEntity"]

        assert pages.create({"id": "1", "title": "Hello world"}) == 1
        assert pages.create([{"id": "2", "title": "b"}, {"id": "3", "title": "c"}]) == 2
        assert pages.create([]) == 0

        assert store.ids("PageEntity") == {"1", "2", "3"}

    def test_references_stored_as_ids_and_extra_fields_dropped(self, store) -> None:
        store.models["PageEntity"].create(
            {"id": "1", "title": "t", "author": {"id": "9", "type": "UserEntity"}, "extra": "x"}
        )

        assert store.get("PageEntity", "1") == {"id": "1", "title": "t", "author": "9"}

    def test_upsert_overwrites(self, store) -> None:
        users = store.models["UserEntity"]
        users.create({"id": "1", "username": "a", "authoredPages": [{"id": "1"}]})
        users.create({"id": "1", "username": "b"})

        assert store.get("UserEntity", "1") == {"id": "1", "username": "b", "authoredPages": []}
        assert store.count("UserEntity") == 1

    def test_instance_without_id(self, store) -> None:
        with pytest.raises(InvalidEntityError) as exc_info:
            store.models["PageEntity"].create({"title": "huérfana"})

        assert exc_info.value.entity_kind == "PageEntity"

    def test_non_mapping_instance(self, store) -> None:
        with pytest.raises(InvalidEntityError):
            store.upsert("PageEntity", ["no-objeto"])

    def test_upsert_unknown_kind(self, store) -> None:
        with pytest.raises(UnknownEntityKindError):
            store.upsert("GhostEntity", [{"id": "1"}])

    def test_unresolved_reference_keeps_raw_value(self, memory_store) -> None:
        """Un array sin discriminador (p.ej. de escalares) no pierde datos."""
        memory_store.define_model(
            "SettingsEntity",
            {
                "flags": ModelField(target_type=None, is_list=True, is_reference=True),
                "extra": ModelField(target_type=None, is_reference=True),
            },
        )

        memory_store.models["SettingsEntity"].create(
            {"id": "1", "flags": [True, False, 3], "extra": {"color": "red"}}
        )

        assert memory_store.get("SettingsEntity", "1") == {
            "id": "1",
            "flags": [True, False, 3],
            "extra": {"color": "red"},
        }

    def test_returned_rows_are_copies(self, store) -> None:
        store.models["UserEntity"].create({"id": "1", "authoredPages": ["1"]})

        store.get("UserEntity", "1")["authoredPages"].append("2")

        assert store.get("UserEntity", "1")["authoredPages"] == ["1"]


class TestDelete:
    """Tests para delete() y limpieza de referencias inversas."""

    def test_delete_detaches_from_reference_lists(self, store) -> None:
        store.models["PageEntity"].create([{"id": "1", "title": "a"}, {"id": "2", "title": "b"}])
        store.models["UserEntity"].create({"id": "1", "authoredPages": [{"id": "1"}, {"id": "2"}]})

        assert store.models["PageEntity"].delete({"id": "2"}) is True

        assert store.get("PageEntity", "2") is None
        assert store.get("UserEntity", "1")["authoredPages"] == ["1"]

    def test_delete_clears_single_references(self, store) -> None:
        store.models["UserEntity"].create({"id": "1", "username": "tyler"})
        store.models["PageEntity"].create({"id": "1", "title": "a", "author": {"id": "1"}})

        store.models["UserEntity"].delete("1")

        assert store.get("PageEntity", "1")["author"] is None

    def test_delete_missing_is_noop(self, store) -> None:
        assert store.models["PageEntity"].delete({"id": "404"}) is False

    def test_delete_without_id(self, store) -> None:
        with pytest.raises(InvalidEntityError):
            store.models["PageEntity"].delete({})


class TestSessionLock:
    """Tests para session_lock()."""

    def test_concurrent_session_is_rejected(self, memory_store) -> None:
        with memory_store.session_lock():
            with pytest.raises(SyncInProgressError):
                with memory_store.session_lock():
                    pass

    def test_lock_is_released(self, memory_store) -> None:
        with memory_store.session_lock():
            pass
        with memory_store.session_lock():
            pass
