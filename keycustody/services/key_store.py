from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import AppSettings
from ..domain.models import Employee, EmployeeDraft, KeyDraft, KeyItem, Transaction
from ..errors import InvalidStateError, KeyCustodyError, NotFoundError, PersistenceError, ValidationError
from ..storage.backend import Row, TableBackend

M = TypeVar("M", bound=BaseModel)
Fields = Union[Mapping[str, Any], BaseModel]

_KEY_DESCRIPTIVE = ("key_number", "type", "length", "note")
_EMPLOYEE_FIELDS = ("name", "employee_number", "type", "start_date")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyStore:
    """Single authority over employees, keys and the transaction ledger.

    Every mutation persists first and only then touches the in-memory
    snapshot, so a failed backend call leaves the snapshot as it was.
    Mutations on the same entity id are serialized with per-id locks; issue
    and return additionally use compare-and-set updates at the backend.
    """

    def __init__(self, backend: TableBackend, settings: AppSettings | None = None) -> None:
        self.log = logging.getLogger("KeyStore")
        self.backend = backend
        settings = settings or AppSettings()
        self.employees_table = settings.employees_table
        self.keys_table = settings.keys_table
        self.transactions_table = settings.transactions_table

        self._employees: List[Employee] = []
        self._keys: List[KeyItem] = []
        self._transactions: List[Transaction] = []
        self._snapshot_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ----------------------
    # Reads
    # ----------------------
    def list_employees(self) -> List[Employee]:
        with self._snapshot_lock:
            return list(self._employees)

    def list_keys(self) -> List[KeyItem]:
        with self._snapshot_lock:
            return list(self._keys)

    def list_transactions(self) -> List[Transaction]:
        with self._snapshot_lock:
            return list(self._transactions)

    def find_employee(self, employee_id: Optional[str]) -> Optional[Employee]:
        with self._snapshot_lock:
            return next((e for e in self._employees if e.id == employee_id), None)

    def find_key(self, key_id: Optional[str]) -> Optional[KeyItem]:
        with self._snapshot_lock:
            return next((k for k in self._keys if k.id == key_id), None)

    def get_employee(self, employee_id: str) -> Employee:
        emp = self.find_employee(employee_id)
        if emp is None:
            raise NotFoundError("Employee", employee_id)
        return emp

    def get_key(self, key_id: str) -> KeyItem:
        key = self.find_key(key_id)
        if key is None:
            raise NotFoundError("Key", key_id)
        return key

    def refresh(self) -> None:
        """Reload all three relations. On failure the previous snapshot is kept."""
        employees = [self._entity(Employee, r) for r in self._call(self.backend.select_all, self.employees_table)]
        keys = [self._entity(KeyItem, r) for r in self._call(self.backend.select_all, self.keys_table)]
        transactions = [self._entity(Transaction, r) for r in self._call(self.backend.select_all, self.transactions_table)]
        transactions.sort(key=lambda t: t.timestamp, reverse=True)
        with self._snapshot_lock:
            self._employees = employees
            self._keys = keys
            self._transactions = transactions
        self.log.info("Loaded %d employees, %d keys, %d transactions", len(employees), len(keys), len(transactions))

    # ----------------------
    # Employees
    # ----------------------
    def add_employee(self, fields: Fields) -> Employee:
        draft = self._validate(EmployeeDraft, self._as_dict(fields))
        row = self._call(self.backend.insert, self.employees_table, Employee.draft_to_row(draft))
        emp = self._entity(Employee, row)
        with self._snapshot_lock:
            self._employees.insert(0, emp)
        self.log.info("Added employee %s (%s)", emp.employee_number, emp.id)
        return emp

    def update_employee(self, employee_id: str, fields: Fields) -> Employee:
        with self._locked(employee_id):
            current = self.get_employee(employee_id)
            merged = {f: getattr(current, f) for f in _EMPLOYEE_FIELDS}
            merged.update({k: v for k, v in self._as_dict(fields).items() if k in _EMPLOYEE_FIELDS})
            draft = self._validate(EmployeeDraft, merged)
            payload = {**Employee.draft_to_row(draft), "updated_at": _now_iso()}
            row = self._call(self.backend.update, self.employees_table, employee_id, payload)
            if row is None:
                raise NotFoundError("Employee", employee_id)
            emp = self._entity(Employee, row)
            with self._snapshot_lock:
                self._employees = [emp if e.id == employee_id else e for e in self._employees]
            self.log.info("Updated employee %s", employee_id)
            return emp

    def delete_employee(self, employee_id: str) -> List[KeyItem]:
        """Delete an employee and free every key they hold. Returns the freed keys."""
        self.get_employee(employee_id)
        held_ids = [k.id for k in self.list_keys() if k.assigned_to == employee_id]
        with self._locked(employee_id, *held_ids):
            self.get_employee(employee_id)
            freed_rows = self._call(
                self.backend.update_where,
                self.keys_table,
                {"status": "available", "assigned_to": None, "updated_at": _now_iso()},
                {"assigned_to": employee_id},
            )
            try:
                deleted = self._call(self.backend.delete, self.employees_table, employee_id)
            except PersistenceError:
                self._restore_assignments(freed_rows, employee_id)
                raise
            if not deleted:
                self.log.warning("Employee %s was already gone from the backend", employee_id)

            freed = {str(r["id"]): self._entity(KeyItem, r) for r in freed_rows}
            with self._snapshot_lock:
                self._employees = [e for e in self._employees if e.id != employee_id]
                keys: List[KeyItem] = []
                for k in self._keys:
                    if k.id in freed:
                        k = freed[k.id]
                    elif k.assigned_to == employee_id:
                        k = k.model_copy(update={"status": "available", "assigned_to": None})
                    keys.append(k)
                self._keys = keys
                released = [k for k in keys if k.id in freed or k.id in held_ids]
            self.log.info("Deleted employee %s, released %d keys", employee_id, len(released))
        self._drop_lock(employee_id)
        return released

    def _restore_assignments(self, freed_rows: List[Row], employee_id: str) -> None:
        for r in freed_rows:
            try:
                self._call(
                    self.backend.update,
                    self.keys_table,
                    str(r["id"]),
                    {"status": "issued", "assigned_to": employee_id},
                    {"assigned_to": None},
                )
            except PersistenceError:
                self.log.exception("Could not restore assignment of key %s to %s", r.get("id"), employee_id)

    # ----------------------
    # Keys
    # ----------------------
    def add_key(self, fields: Fields) -> KeyItem:
        data = self._as_dict(fields)
        draft = self._validate(KeyDraft, {k: v for k, v in data.items() if k in _KEY_DESCRIPTIVE})
        # New keys always start in the pool, whatever the caller passed
        payload = {**KeyItem.draft_to_row(draft), "status": "available", "assigned_to": None}
        row = self._call(self.backend.insert, self.keys_table, payload)
        key = self._entity(KeyItem, row)
        with self._snapshot_lock:
            self._keys.insert(0, key)
        self.log.info("Added key %s (%s)", key.key_number, key.id)
        return key

    def update_key(self, key_id: str, fields: Fields) -> KeyItem:
        """Edit descriptive fields. Custody only changes through issue_key/return_key."""
        with self._locked(key_id):
            current = self.get_key(key_id)
            data = self._as_dict(fields)
            if "status" in data and data["status"] != current.status:
                raise InvalidStateError("Key status can only change by issuing or returning the key")
            if "assigned_to" in data and (data["assigned_to"] or None) != current.assigned_to:
                raise InvalidStateError("Key assignment can only change by issuing or returning the key")
            merged = {f: getattr(current, f) for f in _KEY_DESCRIPTIVE}
            merged.update({k: v for k, v in data.items() if k in _KEY_DESCRIPTIVE})
            draft = self._validate(KeyDraft, merged)
            payload = {**KeyItem.draft_to_row(draft), "updated_at": _now_iso()}
            row = self._call(self.backend.update, self.keys_table, key_id, payload)
            if row is None:
                raise NotFoundError("Key", key_id)
            key = self._entity(KeyItem, row)
            self._replace_key(key)
            self.log.info("Updated key %s", key_id)
            return key

    def delete_key(self, key_id: str) -> None:
        with self._locked(key_id):
            self.get_key(key_id)
            if not self._call(self.backend.delete, self.keys_table, key_id):
                self.log.warning("Key %s was already gone from the backend", key_id)
            with self._snapshot_lock:
                self._keys = [k for k in self._keys if k.id != key_id]
            self.log.info("Deleted key %s", key_id)
        self._drop_lock(key_id)

    # ----------------------
    # Issue / return
    # ----------------------
    def issue_key(self, key_id: str, employee_id: str, handled_by: Optional[str], notes: Optional[str] = None) -> Transaction:
        with self._locked(key_id, employee_id):
            key = self.get_key(key_id)
            self.get_employee(employee_id)
            if key.is_issued:
                raise InvalidStateError(f"Key {key.key_number} is already issued")
            row = self._call(
                self.backend.update,
                self.keys_table,
                key_id,
                {"status": "issued", "assigned_to": employee_id, "updated_at": _now_iso()},
                {"status": "available", "assigned_to": None},
            )
            if row is None:
                current = self._reload_key(key_id)
                raise InvalidStateError(f"Key {current.key_number} was issued elsewhere in the meantime")
            try:
                tx_row = self._call(
                    self.backend.insert,
                    self.transactions_table,
                    Transaction.new_row(employee_id, key_id, "issue", handled_by, notes),
                )
            except PersistenceError:
                self._revert_key(key_id, {"status": "available", "assigned_to": None}, {"status": "issued", "assigned_to": employee_id})
                raise
            return self._commit_custody(self._entity(KeyItem, row), self._entity(Transaction, tx_row))

    def return_key(self, key_id: str, handled_by: Optional[str], notes: Optional[str] = None) -> Optional[Transaction]:
        """Return a key to the pool. A key that is already available is left alone and None returned."""
        with self._locked(key_id):
            key = self.get_key(key_id)
            if not key.is_issued or key.assigned_to is None:
                self.log.info("Return of available key %s ignored", key_id)
                return None
            holder = key.assigned_to
            row = self._call(
                self.backend.update,
                self.keys_table,
                key_id,
                {"status": "available", "assigned_to": None, "updated_at": _now_iso()},
                {"status": "issued", "assigned_to": holder},
            )
            if row is None:
                current = self._reload_key(key_id)
                if not current.is_issued:
                    self.log.info("Key %s was already returned elsewhere; return ignored", key_id)
                    return None
                raise InvalidStateError(f"Key {current.key_number} is now issued to someone else")
            try:
                tx_row = self._call(
                    self.backend.insert,
                    self.transactions_table,
                    Transaction.new_row(holder, key_id, "return", handled_by, notes),
                )
            except PersistenceError:
                self._revert_key(key_id, {"status": "issued", "assigned_to": holder}, {"status": "available", "assigned_to": None})
                raise
            return self._commit_custody(self._entity(KeyItem, row), self._entity(Transaction, tx_row))

    def _commit_custody(self, key: KeyItem, tx: Transaction) -> Transaction:
        with self._snapshot_lock:
            self._keys = [key if k.id == key.id else k for k in self._keys]
            self._transactions.insert(0, tx)
        self.log.info("%s key %s (employee %s)", tx.action.capitalize(), tx.key_id, tx.employee_id)
        return tx

    def _revert_key(self, key_id: str, fields: Row, match: Row) -> None:
        try:
            self._call(self.backend.update, self.keys_table, key_id, fields, match)
        except PersistenceError:
            self.log.exception("Could not revert key %s after ledger write failed", key_id)

    # ----------------------
    # Helpers
    # ----------------------
    def _replace_key(self, key: KeyItem) -> None:
        with self._snapshot_lock:
            self._keys = [key if k.id == key.id else k for k in self._keys]

    def _reload_key(self, key_id: str) -> KeyItem:
        """Bring one key's snapshot entry in line with the backend after a missed compare-and-set."""
        row = self._call(self.backend.get, self.keys_table, key_id)
        if row is None:
            with self._snapshot_lock:
                self._keys = [k for k in self._keys if k.id != key_id]
            raise NotFoundError("Key", key_id)
        key = self._entity(KeyItem, row)
        self._replace_key(key)
        return key

    def _drop_lock(self, entity_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(entity_id, None)

    @contextmanager
    def _locked(self, *ids: str) -> Iterator[None]:
        # locks are always taken in sorted id order
        with self._locks_guard:
            locks = [self._locks.setdefault(i, threading.Lock()) for i in sorted(set(ids))]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except KeyCustodyError:
            raise
        except Exception as exc:
            self.log.exception("Backend call %s failed", getattr(fn, "__name__", fn))
            raise PersistenceError(str(exc)) from exc

    @staticmethod
    def _as_dict(fields: Fields) -> Dict[str, Any]:
        if isinstance(fields, BaseModel):
            return fields.model_dump()
        return dict(fields)

    @staticmethod
    def _validate(model: Type[M], data: Mapping[str, Any]) -> M:
        try:
            return model.model_validate(dict(data))
        except PydanticValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}" for err in exc.errors()
            )
            raise ValidationError(problems) from exc

    def _entity(self, model: Type[M], row: Row) -> M:
        try:
            return model.from_row(row)  # type: ignore[attr-defined]
        except (PydanticValidationError, KeyError, TypeError) as exc:
            self.log.error("Unexpected %s row from backend: %s", model.__name__, row)
            raise PersistenceError(f"Malformed {model.__name__} row from backend: {exc}") from exc


__all__ = ["KeyStore"]
