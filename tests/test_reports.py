from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from keycustody.domain.models import Employee, KeyItem, Transaction
from keycustody.services import reports

NOW = datetime(2026, 10, 18, 15, 0, 0)


def _local_aware(dt: datetime) -> datetime:
    return dt.astimezone()


@pytest.fixture
def employees():
    return [
        Employee(id="e1", name="Jan Janssen", employee_number="EMP001", type="CAO", start_date=date(2020, 1, 15)),
        Employee(id="e2", name="Piet de Vries", employee_number="EMP002", type="MBV", start_date=date(2014, 2, 1)),
        Employee(id="e3", name="Klaas Bakker", employee_number="EMP003", type="CAO", start_date=date(2018, 9, 9)),
    ]


@pytest.fixture
def keys():
    return [
        KeyItem(id="k1", key_number="A001", type="A", length="kort", status="issued", assigned_to="e1"),
        KeyItem(id="k2", key_number="A002", type="A", length="lang"),
        KeyItem(id="k3", key_number="B001", type="B", length="kort", note="Magazijn achterdeur"),
        KeyItem(id="k4", key_number="C001", type="C", length="lang", status="issued", assigned_to="e2"),
    ]


@pytest.fixture
def transactions():
    return [
        Transaction(id="t4", employee_id="e2", key_id="k4", action="issue", timestamp=_local_aware(NOW - timedelta(hours=1))),
        Transaction(id="t3", employee_id="e1", key_id="k1", action="issue", timestamp=_local_aware(NOW - timedelta(days=3)), notes="spare set"),
        Transaction(id="t2", employee_id="e1", key_id="k9", action="return", timestamp=_local_aware(NOW - timedelta(days=20))),
        Transaction(id="t1", employee_id="gone", key_id="k9", action="issue", timestamp=_local_aware(NOW - timedelta(days=90))),
    ]


def test_filter_employees_by_name_or_number(employees):
    assert [e.id for e in reports.filter_employees(employees, "jan")] == ["e1"]
    assert [e.id for e in reports.filter_employees(employees, "emp00")] == ["e1", "e2", "e3"]
    assert reports.filter_employees(employees, "  ") == employees


def test_filter_keys_by_search_and_status(keys):
    assert [k.id for k in reports.filter_keys(keys, "a00")] == ["k1", "k2"]
    assert [k.id for k in reports.filter_keys(keys, "achterdeur")] == ["k3"]
    assert [k.id for k in reports.filter_keys(keys, status="issued")] == ["k1", "k4"]
    assert [k.id for k in reports.filter_keys(keys, "a0", status="available")] == ["k2"]


def test_filter_transactions(employees, keys, transactions):
    emp = reports.employee_index(employees)
    key = reports.key_index(keys)

    def ids(**kw):
        return [t.id for t in reports.filter_transactions(transactions, emp, key, now=NOW, **kw)]

    assert ids() == ["t4", "t3", "t2", "t1"]
    assert ids(search="piet") == ["t4"]
    assert ids(search="a001") == ["t3"]
    assert ids(search="spare") == ["t3"]
    assert ids(action="return") == ["t2"]
    assert ids(date_filter="today") == ["t4"]
    assert ids(date_filter="week") == ["t4", "t3"]
    assert ids(date_filter="month") == ["t4", "t3", "t2"]


def test_date_range_all_is_unbounded():
    assert reports.date_range("all", NOW) is None
    start, end = reports.date_range("week", NOW)
    assert start == datetime(2026, 10, 11)
    assert end == NOW


def test_labels_for_unresolved_references(employees, keys):
    emp = reports.employee_index(employees)
    key = reports.key_index(keys)
    assert reports.employee_label("e1", emp) == "Jan Janssen (EMP001)"
    assert reports.employee_label("gone", emp) == reports.UNKNOWN
    assert reports.key_label("k9", key) == reports.UNKNOWN


def test_dashboard_stats(employees, keys, transactions):
    stats = reports.dashboard_stats(employees, keys, transactions, now=NOW)
    assert stats.total_employees == 3
    assert stats.available_keys == 2
    assert stats.issued_keys == 2
    assert stats.today_transactions == 1
    assert [t.id for t in stats.recent] == ["t4", "t3", "t2", "t1"]
    by_type = {a.key_type: (a.available, a.total) for a in stats.availability}
    assert by_type == {"A": (1, 2), "B": (1, 1), "C": (0, 1)}
    assert stats.availability[0].percentage == 50.0
    assert stats.employees_by_type == {"CAO": 2, "MBV": 1}
    expected_avg = round(sum(e.years_of_service for e in employees) / 3)
    assert stats.average_years_of_service == expected_avg


def test_dashboard_stats_empty():
    stats = reports.dashboard_stats([], [], [], now=NOW)
    assert stats.average_years_of_service == 0
    assert all(a.percentage == 0.0 for a in stats.availability)


def test_ledger_and_employee_stats(keys, transactions):
    ledger = reports.ledger_stats(transactions, now=NOW)
    assert (ledger.total, ledger.today, ledger.issued, ledger.returned) == (4, 1, 3, 1)
    assert reports.unique_employee_count(transactions) == 3

    mine = reports.employee_stats("e1", keys, transactions)
    assert (mine.total_transactions, mine.keys_received, mine.keys_returned, mine.current_keys) == (2, 1, 1, 1)
    assert [t.id for t in reports.transactions_for_employee(transactions, "e1")] == ["t3", "t2"]
