from types import SimpleNamespace

import pytest

from errors import StoreIOError
from stores import InMemoryRowStore, SupabaseRowStore, escape_like


class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table_name = table
        self.calls = []

    def __getattr__(self, name):
        def record(*args):
            self.calls.append((name, args))
            return self
        return record

    def execute(self):
        self.client.executed.append((self.table_name, self.calls))
        if self.client.error is not None:
            raise self.client.error
        return SimpleNamespace(data=self.client.data)


class FakeSupabase:
    def __init__(self, data=None, error=None) -> None:
        self.data = data if data is not None else []
        self.error = error
        self.executed = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


def test_escape_like() -> None:
    assert escape_like("100%_sure\\") == "100\\%\\_sure\\\\"
    assert escape_like("Dupont") == "Dupont"


def test_supabase_select_builds_case_insensitive_filters() -> None:
    client = FakeSupabase(data=[{"id": 1, "nom": "Dupont"}])
    store = SupabaseRowStore(client)

    rows = store.select("medecin", {"nom": "dupont", "ville": None})

    assert rows == [{"id": 1, "nom": "Dupont"}]
    table, calls = client.executed[0]
    assert table == "medecin"
    assert calls == [("select", ("*",)), ("ilike", ("nom", "dupont")), ("is_", ("ville", "null"))]


def test_supabase_insert_and_update() -> None:
    client = FakeSupabase(data=[{"id": 7, "nom": "Martin"}])
    store = SupabaseRowStore(client)

    assert store.insert("medecin", {"nom": "Martin"}) == {"id": 7, "nom": "Martin"}
    store.update("medecin", 7, {"specialite": "Pédiatrie"})

    assert client.executed[0][1] == [("insert", ({"nom": "Martin"},))]
    assert client.executed[1][1] == [("update", ({"specialite": "Pédiatrie"},)), ("eq", ("id", 7))]


def test_supabase_failures_become_store_errors() -> None:
    store = SupabaseRowStore(FakeSupabase(error=RuntimeError("connection reset")))
    with pytest.raises(StoreIOError) as exc:
        store.select("medecin", {"nom": "Dupont"})
    assert "connection reset" in str(exc.value)
    assert exc.value.stage == "store"
    with pytest.raises(StoreIOError):
        store.insert("medecin", {"nom": "Dupont"})
    with pytest.raises(StoreIOError):
        store.update("medecin", 1, {"nom": "Dupont"})


def test_supabase_requires_credentials() -> None:
    with pytest.raises(StoreIOError):
        SupabaseRowStore(url="", key="")


def test_in_memory_matching_and_projection() -> None:
    store = InMemoryRowStore()
    store.insert("medecin", {"nom": "Dupont", "ville": "Paris", "specialite": None})
    store.insert("medecin", {"nom": "Martin", "ville": None, "specialite": "Pédiatrie"})

    assert [r["id"] for r in store.select("medecin", {"nom": "DUPONT"})] == [1]
    assert [r["nom"] for r in store.select("medecin", {"ville": None})] == ["Martin"]
    assert store.select("medecin", {"nom": "Dup"}) == []
    assert store.select("medecin", columns="nom, ville") == [
        {"nom": "Dupont", "ville": "Paris"},
        {"nom": "Martin", "ville": None},
    ]
    assert store.select("autre") == []


def test_in_memory_update() -> None:
    store = InMemoryRowStore({"medecin": [{"id": 4, "nom": "Dupont"}]})
    store.update("medecin", 4, {"nom": "Durand"})
    assert store.select("medecin") == [{"id": 4, "nom": "Durand"}]
    assert store.insert("medecin", {"nom": "Martin"})["id"] == 5
    with pytest.raises(StoreIOError):
        store.update("medecin", 99, {"nom": "X"})
