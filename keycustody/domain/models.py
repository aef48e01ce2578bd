from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

EmployeeType = Literal["CAO", "MBV"]
KeyType = Literal["A", "B", "C"]
KeyLength = Literal["kort", "lang"]
KeyStatus = Literal["available", "issued"]
Action = Literal["issue", "return"]

EMPLOYEE_TYPES = ("CAO", "MBV")
KEY_TYPES = ("A", "B", "C")
KEY_LENGTHS = ("kort", "lang")

log = logging.getLogger("models")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def years_of_service(start_date: date, today: Optional[date] = None) -> int:
    """Current year minus start year; negative for a start date in a future year."""
    today = today or date.today()
    return today.year - start_date.year


def _strip_required(v: str, label: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError(f"{label} cannot be empty")
    return v


def _ref(v: Any) -> Optional[str]:
    # NULL stays None so a required reference fails validation
    return None if v is None else str(v)


def _optional_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ----------------------
# Drafts (user input)
# ----------------------
class EmployeeDraft(BaseModel):
    name: str
    employee_number: str
    type: EmployeeType
    start_date: date

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Name")

    @field_validator("employee_number")
    @classmethod
    def _number_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Employee number")


class KeyDraft(BaseModel):
    key_number: str
    type: KeyType
    length: KeyLength
    note: Optional[str] = None

    @field_validator("key_number")
    @classmethod
    def _number_not_empty(cls, v: str) -> str:
        return _strip_required(v, "Key number")

    @field_validator("note", mode="before")
    @classmethod
    def _blank_note(cls, v: Optional[str]) -> Optional[str]:
        return _optional_text(v)


# ----------------------
# Entities
# ----------------------
class Employee(BaseModel):
    id: str
    name: str
    employee_number: str
    type: EmployeeType
    start_date: date
    created_at: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def years_of_service(self) -> int:
        return years_of_service(self.start_date)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Employee":
        # years_of_service in the row is ignored: it is always recomputed
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            employee_number=row.get("employee_number") or "",
            type=row.get("type") or "CAO",
            start_date=row["start_date"],
            created_at=row.get("created_at"),
        )

    @staticmethod
    def draft_to_row(draft: EmployeeDraft) -> Dict[str, Any]:
        return {
            "name": draft.name,
            "employee_number": draft.employee_number,
            "type": draft.type,
            "start_date": draft.start_date.isoformat(),
            "years_of_service": years_of_service(draft.start_date),
        }


class KeyItem(BaseModel):
    id: str
    key_number: str
    type: KeyType
    length: KeyLength
    status: KeyStatus = "available"
    assigned_to: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[str] = None

    @model_validator(mode="after")
    def _assignment_matches_status(self) -> "KeyItem":
        if (self.status == "issued") != (self.assigned_to is not None):
            raise ValueError("assigned_to must be set if and only if status is 'issued'")
        return self

    @property
    def is_issued(self) -> bool:
        return self.status == "issued"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "KeyItem":
        assigned = row.get("assigned_to") or None
        status = row.get("status") or "available"
        if (status == "issued") != (assigned is not None):
            # Rows written by older clients may break the invariant; trust the assignment
            log.warning("Key %s has status=%s assigned_to=%s; normalizing", row.get("id"), status, assigned)
            status = "issued" if assigned else "available"
        return cls(
            id=str(row["id"]),
            key_number=row.get("key_number") or "",
            type=row.get("type") or "A",
            length=row.get("length") or "kort",
            status=status,
            assigned_to=assigned,
            note=row.get("opmerking"),
            created_at=row.get("created_at"),
        )

    @staticmethod
    def draft_to_row(draft: KeyDraft) -> Dict[str, Any]:
        return {
            "key_number": draft.key_number,
            "type": draft.type,
            "length": draft.length,
            "opmerking": draft.note,
        }


class Transaction(BaseModel):
    id: str
    employee_id: str
    key_id: str
    action: Action
    timestamp: datetime = Field(default_factory=_now)
    notes: Optional[str] = None
    handled_by: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Transaction":
        return cls(
            id=str(row["id"]),
            employee_id=_ref(row.get("employee_id")),
            key_id=_ref(row.get("key_id")),
            action=row["action"],
            timestamp=row.get("timestamp") or row.get("created_at") or _now(),
            notes=row.get("notes"),
            handled_by=row.get("handled_by"),
        )

    @staticmethod
    def new_row(employee_id: str, key_id: str, action: Action, handled_by: Optional[str], notes: Optional[str]) -> Dict[str, Any]:
        return {
            "employee_id": employee_id,
            "key_id": key_id,
            "action": action,
            "timestamp": _now().isoformat(),
            "notes": _optional_text(notes),
            "handled_by": _optional_text(handled_by),
        }


__all__ = [
    "EmployeeType",
    "KeyType",
    "KeyLength",
    "KeyStatus",
    "Action",
    "EMPLOYEE_TYPES",
    "KEY_TYPES",
    "KEY_LENGTHS",
    "years_of_service",
    "EmployeeDraft",
    "KeyDraft",
    "Employee",
    "KeyItem",
    "Transaction",
]
