"""Filters and statistics derived from a store snapshot.

Everything here is a pure function over lists of entities; the screens call
these to decide what to show and never keep domain state of their own.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Literal, Optional, Sequence

from ..domain.models import EMPLOYEE_TYPES, KEY_TYPES, Employee, KeyItem, Transaction

StatusFilter = Literal["all", "available", "issued"]
ActionFilter = Literal["all", "issue", "return"]
DateFilter = Literal["all", "today", "week", "month"]

UNKNOWN = "Unknown"


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle in haystack.lower()  # type: ignore[union-attr]


def _local(ts: datetime) -> datetime:
    # naive "now" is local time; compare aware timestamps in local time too
    return ts.astimezone().replace(tzinfo=None) if ts.tzinfo else ts


# ----------------------
# Lookups
# ----------------------
def employee_index(employees: Iterable[Employee]) -> Dict[str, Employee]:
    return {e.id: e for e in employees}


def key_index(keys: Iterable[KeyItem]) -> Dict[str, KeyItem]:
    return {k.id: k for k in keys}


def employee_label(employee_id: Optional[str], employees: Dict[str, Employee]) -> str:
    emp = employees.get(employee_id or "")
    return f"{emp.name} ({emp.employee_number})" if emp else UNKNOWN


def key_label(key_id: Optional[str], keys: Dict[str, KeyItem]) -> str:
    key = keys.get(key_id or "")
    return key.key_number if key else UNKNOWN


# ----------------------
# Filters
# ----------------------
def filter_employees(employees: Sequence[Employee], search: str = "") -> List[Employee]:
    term = (search or "").strip().lower()
    if not term:
        return list(employees)
    return [e for e in employees if _contains(e.name, term) or _contains(e.employee_number, term)]


def filter_keys(keys: Sequence[KeyItem], search: str = "", status: StatusFilter = "all") -> List[KeyItem]:
    term = (search or "").strip().lower()
    out: List[KeyItem] = []
    for k in keys:
        if term and not (_contains(k.key_number, term) or _contains(k.note, term)):
            continue
        if status != "all" and k.status != status:
            continue
        out.append(k)
    return out


def date_range(date_filter: DateFilter, now: Optional[datetime] = None) -> Optional[tuple[datetime, datetime]]:
    """(start, end) window for a date filter; None for "all"."""
    now = now or datetime.now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_filter == "today":
        return start_of_day, now
    if date_filter == "week":
        return start_of_day - timedelta(days=7), now
    if date_filter == "month":
        return start_of_day - timedelta(days=30), now
    return None


def filter_transactions(
    transactions: Sequence[Transaction],
    employees: Dict[str, Employee],
    keys: Dict[str, KeyItem],
    search: str = "",
    action: ActionFilter = "all",
    date_filter: DateFilter = "all",
    now: Optional[datetime] = None,
) -> List[Transaction]:
    term = (search or "").strip().lower()
    window = date_range(date_filter, now)
    out: List[Transaction] = []
    for t in transactions:
        if term:
            emp = employees.get(t.employee_id)
            key = keys.get(t.key_id)
            if not (
                (emp is not None and _contains(emp.name, term))
                or (key is not None and _contains(key.key_number, term))
                or _contains(t.notes, term)
            ):
                continue
        if action != "all" and t.action != action:
            continue
        if window is not None:
            ts = _local(t.timestamp)
            if not (window[0] <= ts <= window[1]):
                continue
        out.append(t)
    return out


def transactions_for_employee(transactions: Sequence[Transaction], employee_id: str) -> List[Transaction]:
    return sorted((t for t in transactions if t.employee_id == employee_id), key=lambda t: t.timestamp, reverse=True)


def keys_held_by(keys: Sequence[KeyItem], employee_id: str) -> List[KeyItem]:
    return [k for k in keys if k.assigned_to == employee_id]


# ----------------------
# Stats
# ----------------------
@dataclass
class TypeAvailability:
    key_type: str
    available: int
    total: int

    @property
    def percentage(self) -> float:
        return (self.available / self.total) * 100 if self.total else 0.0


@dataclass
class DashboardStats:
    total_employees: int
    available_keys: int
    issued_keys: int
    today_transactions: int
    recent: List[Transaction]
    availability: List[TypeAvailability]
    employees_by_type: Dict[str, int]
    average_years_of_service: int


@dataclass
class LedgerStats:
    total: int
    today: int
    issued: int
    returned: int


@dataclass
class EmployeeStats:
    total_transactions: int
    keys_received: int
    keys_returned: int
    current_keys: int


def _is_today(ts: datetime, now: Optional[datetime]) -> bool:
    now = now or datetime.now()
    return _local(ts).date() == now.date()


def ledger_stats(transactions: Sequence[Transaction], now: Optional[datetime] = None) -> LedgerStats:
    return LedgerStats(
        total=len(transactions),
        today=sum(1 for t in transactions if _is_today(t.timestamp, now)),
        issued=sum(1 for t in transactions if t.action == "issue"),
        returned=sum(1 for t in transactions if t.action == "return"),
    )


def unique_employee_count(transactions: Sequence[Transaction]) -> int:
    return len({t.employee_id for t in transactions})


def dashboard_stats(
    employees: Sequence[Employee],
    keys: Sequence[KeyItem],
    transactions: Sequence[Transaction],
    now: Optional[datetime] = None,
    recent_count: int = 5,
) -> DashboardStats:
    availability = []
    for key_type in KEY_TYPES:
        of_type = [k for k in keys if k.type == key_type]
        availability.append(
            TypeAvailability(key_type, sum(1 for k in of_type if k.status == "available"), len(of_type))
        )
    avg = round(sum(e.years_of_service for e in employees) / len(employees)) if employees else 0
    return DashboardStats(
        total_employees=len(employees),
        available_keys=sum(1 for k in keys if k.status == "available"),
        issued_keys=sum(1 for k in keys if k.status == "issued"),
        today_transactions=ledger_stats(transactions, now).today,
        recent=list(transactions[:recent_count]),
        availability=availability,
        employees_by_type={t: sum(1 for e in employees if e.type == t) for t in EMPLOYEE_TYPES},
        average_years_of_service=avg,
    )


def employee_stats(employee_id: str, keys: Sequence[KeyItem], transactions: Sequence[Transaction]) -> EmployeeStats:
    mine = [t for t in transactions if t.employee_id == employee_id]
    return EmployeeStats(
        total_transactions=len(mine),
        keys_received=sum(1 for t in mine if t.action == "issue"),
        keys_returned=sum(1 for t in mine if t.action == "return"),
        current_keys=len(keys_held_by(keys, employee_id)),
    )


__all__ = [
    "UNKNOWN",
    "employee_index",
    "key_index",
    "employee_label",
    "key_label",
    "filter_employees",
    "filter_keys",
    "date_range",
    "filter_transactions",
    "transactions_for_employee",
    "keys_held_by",
    "TypeAvailability",
    "DashboardStats",
    "LedgerStats",
    "EmployeeStats",
    "ledger_stats",
    "unique_employee_count",
    "dashboard_stats",
    "employee_stats",
]
