"""Shared fakes and fixtures for the pipeline tests."""

import itertools
from typing import Any, Dict, List, Optional

import pytest
from google.api_core import exceptions as gcs_exceptions

from errors import GeocodeError, StoreIOError
from models import Coordinates
from stores import InMemoryRowStore


class FakeGeocoder:
    def __init__(self, coordinates: Optional[Coordinates] = None) -> None:
        self.coordinates = coordinates or Coordinates(lat=48.8566, lng=2.3522)
        self.queries: List[str] = []

    def resolve(self, address: str) -> Optional[Coordinates]:
        self.queries.append(address)
        return self.coordinates


class FailingGeocoder:
    def resolve(self, address: str) -> Optional[Coordinates]:
        raise GeocodeError(f"timeout for {address}")


class RecordingRowStore(InMemoryRowStore):
    """InMemoryRowStore that logs every mutation and can fail inserts for chosen names."""

    def __init__(self, tables=None, fail_on_nom: Optional[str] = None) -> None:
        super().__init__(tables)
        self.fail_on_nom = fail_on_nom
        self.mutations: List[tuple] = []

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_on_nom is not None and values.get("nom") == self.fail_on_nom:
            raise StoreIOError("duplicate key value violates unique constraint")
        self.mutations.append(("insert", values.get("nom")))
        return super().insert(table, values)

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        self.mutations.append(("update", row_id))
        super().update(table, row_id, values)


class FakeBlob:
    def __init__(self, bucket: "FakeBucket", name: str) -> None:
        self.bucket = bucket
        self.name = name

    def upload_from_string(self, data, content_type=None, if_generation_match=None) -> None:
        if if_generation_match == 0 and self.name in self.bucket.objects:
            raise gcs_exceptions.PreconditionFailed(f"{self.name} exists")
        self.bucket.objects[self.name] = (data, content_type)


class FakeBucket:
    def __init__(self, name: str) -> None:
        self.name = name
        self.objects: Dict[str, tuple] = {}

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)


class FakeGcsClient:
    def __init__(self) -> None:
        self.buckets: Dict[str, FakeBucket] = {}

    def bucket(self, name: str) -> FakeBucket:
        return self.buckets.setdefault(name, FakeBucket(name))


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def row_store() -> InMemoryRowStore:
    return InMemoryRowStore()


@pytest.fixture
def gcs_client() -> FakeGcsClient:
    return FakeGcsClient()


@pytest.fixture
def ms_clock():
    return itertools.count(1700000000000).__next__
