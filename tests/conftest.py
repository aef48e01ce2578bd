"""Shared fixtures: an in-memory backend and a backend that fails on demand."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Set, Tuple

import pytest

from keycustody.errors import PersistenceError
from keycustody.services.key_store import KeyStore
from keycustody.storage.memory_backend import MemoryBackend


class FlakyBackend(MemoryBackend):
    """MemoryBackend that fails or stalls selected (method, table) pairs."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: Set[Tuple[str, str]] = set()
        self.calls: list[Tuple[str, str]] = []
        self.delays: Dict[Tuple[str, str], float] = {}

    def fail(self, method: str, table: str) -> None:
        self.failures.add((method, table))

    def slow(self, method: str, table: str, seconds: float) -> None:
        self.delays[(method, table)] = seconds

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        if (method, table) in self.failures:
            raise PersistenceError(f"{method} on {table} failed")
        if (method, table) in self.delays:
            time.sleep(self.delays[(method, table)])

    def select_all(self, table: str):
        self._check("select_all", table)
        return super().select_all(table)

    def get(self, table: str, row_id: str):
        self._check("get", table)
        return super().get(table, row_id)

    def insert(self, table: str, row: Any):
        self._check("insert", table)
        return super().insert(table, row)

    def update(self, table: str, row_id: str, fields: Any, match: Optional[Any] = None):
        self._check("update", table)
        return super().update(table, row_id, fields, match)

    def update_where(self, table: str, fields: Any, match: Any):
        self._check("update_where", table)
        return super().update_where(table, fields, match)

    def delete(self, table: str, row_id: str):
        self._check("delete", table)
        return super().delete(table, row_id)


@pytest.fixture
def backend() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture
def store(backend: FlakyBackend) -> KeyStore:
    return KeyStore(backend)


@pytest.fixture
def jan(store: KeyStore):
    return store.add_employee(
        {"name": "Jan Janssen", "employee_number": "EMP001", "type": "CAO", "start_date": "2020-01-15"}
    )


@pytest.fixture
def piet(store: KeyStore):
    return store.add_employee(
        {"name": "Piet de Vries", "employee_number": "EMP002", "type": "MBV", "start_date": "2015-06-01"}
    )


@pytest.fixture
def key_a(store: KeyStore):
    return store.add_key({"key_number": "A001", "type": "A", "length": "kort"})


@pytest.fixture
def key_b(store: KeyStore):
    return store.add_key({"key_number": "B001", "type": "B", "length": "lang", "note": "Back door"})
