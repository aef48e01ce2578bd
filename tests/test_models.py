from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from keycustody.domain.models import Employee, EmployeeDraft, KeyDraft, KeyItem, Transaction, years_of_service


def test_years_of_service():
    assert years_of_service(date(2020, 1, 15), today=date(2026, 1, 1)) == 6
    assert years_of_service(date(2030, 1, 1), today=date(2026, 1, 1)) == -4


def test_employee_row_translation_ignores_stored_years():
    row = {
        "id": "e1",
        "name": "Jan Janssen",
        "employee_number": "EMP001",
        "type": "CAO",
        "start_date": "2020-01-15",
        "years_of_service": 99,
        "created_at": "2024-01-01T00:00:00+00:00",
    }
    emp = Employee.from_row(row)
    assert emp.employee_number == "EMP001"
    assert emp.years_of_service == date.today().year - 2020
    assert emp.model_dump()["years_of_service"] == emp.years_of_service


def test_employee_draft_to_row():
    draft = EmployeeDraft(name=" Jan ", employee_number="EMP001", type="MBV", start_date="2019-03-01")
    row = Employee.draft_to_row(draft)
    assert row == {
        "name": "Jan",
        "employee_number": "EMP001",
        "type": "MBV",
        "start_date": "2019-03-01",
        "years_of_service": date.today().year - 2019,
    }


def test_key_note_maps_to_opmerking():
    key = KeyItem.from_row({"id": "k1", "key_number": "A001", "type": "A", "length": "kort", "status": "available", "opmerking": "kapot"})
    assert key.note == "kapot"
    assert KeyItem.draft_to_row(KeyDraft(key_number="A001", type="A", length="kort", note="kapot"))["opmerking"] == "kapot"


@pytest.mark.parametrize("status,assigned", [("issued", None), ("available", "e1")])
def test_key_invariant_enforced(status, assigned):
    with pytest.raises(ValidationError):
        KeyItem(id="k", key_number="A", type="A", length="kort", status=status, assigned_to=assigned)


def test_transaction_from_row_and_immutability():
    tx = Transaction.from_row(
        {"id": "t1", "employee_id": "e1", "key_id": "k1", "action": "issue", "timestamp": "2026-10-18T10:00:00+00:00", "handled_by": "op"}
    )
    assert tx.timestamp == datetime(2026, 10, 18, 10, tzinfo=timezone.utc)
    assert tx.notes is None
    with pytest.raises(ValidationError):
        tx.action = "return"  # type: ignore[misc]


@pytest.mark.parametrize("column", ["employee_id", "key_id"])
def test_transaction_from_row_rejects_null_reference(column):
    row = {"id": "t1", "employee_id": "e1", "key_id": "k1", "action": "return"}
    row[column] = None
    with pytest.raises(ValidationError):
        Transaction.from_row(row)


def test_new_transaction_row_strips_blanks():
    row = Transaction.new_row("e1", "k1", "return", "  ", "")
    assert row["handled_by"] is None
    assert row["notes"] is None
    assert row["action"] == "return"
