from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from PyQt5.QtCore import QDate, Qt
from PyQt5.QtWidgets import (
    QComboBox,
    QDateEdit,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QGridLayout,
    QGroupBox,
    QHeaderView,
    QLabel,
    QLineEdit,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from ..domain.models import EMPLOYEE_TYPES, KEY_LENGTHS, KEY_TYPES, Employee, KeyItem, Transaction
from ..services import reports


def _buttons(dialog: QDialog) -> QDialogButtonBox:
    box = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
    box.accepted.connect(dialog.accept)
    box.rejected.connect(dialog.reject)
    return box


def fill_table(table: QTableWidget, headers: List[str], rows: List[List[str]]) -> None:
    table.clear()
    table.setColumnCount(len(headers))
    table.setHorizontalHeaderLabels(headers)
    table.setRowCount(len(rows))
    for r, values in enumerate(rows):
        for c, value in enumerate(values):
            table.setItem(r, c, QTableWidgetItem(value))


def make_table() -> QTableWidget:
    table = QTableWidget()
    table.setEditTriggers(QTableWidget.NoEditTriggers)
    table.setSelectionBehavior(QTableWidget.SelectRows)
    table.setSelectionMode(QTableWidget.SingleSelection)
    table.verticalHeader().setVisible(False)
    table.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
    return table


def format_ts(tx: Transaction) -> str:
    return tx.timestamp.astimezone().strftime("%Y-%m-%d %H:%M")


class EmployeeDialog(QDialog):
    def __init__(self, parent: Optional[QWidget] = None, employee: Optional[Employee] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Edit employee" if employee else "Add employee")
        form = QFormLayout(self)
        self.txt_name = QLineEdit(employee.name if employee else "")
        self.txt_number = QLineEdit(employee.employee_number if employee else "")
        self.cmb_type = QComboBox()
        self.cmb_type.addItems(list(EMPLOYEE_TYPES))
        self.date_start = QDateEdit()
        self.date_start.setCalendarPopup(True)
        self.date_start.setDisplayFormat("yyyy-MM-dd")
        start = employee.start_date if employee else date.today()
        self.date_start.setDate(QDate(start.year, start.month, start.day))
        if employee:
            self.cmb_type.setCurrentText(employee.type)
        form.addRow("Name", self.txt_name)
        form.addRow("Employee number", self.txt_number)
        form.addRow("Type", self.cmb_type)
        form.addRow("Start date", self.date_start)
        form.addRow(_buttons(self))

    def values(self) -> Dict[str, Any]:
        return {
            "name": self.txt_name.text(),
            "employee_number": self.txt_number.text(),
            "type": self.cmb_type.currentText(),
            "start_date": self.date_start.date().toPyDate(),
        }


class KeyDialog(QDialog):
    def __init__(self, parent: Optional[QWidget] = None, key: Optional[KeyItem] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Edit key" if key else "Add key")
        form = QFormLayout(self)
        self.txt_number = QLineEdit(key.key_number if key else "")
        self.cmb_type = QComboBox()
        self.cmb_type.addItems(list(KEY_TYPES))
        self.cmb_length = QComboBox()
        self.cmb_length.addItems(list(KEY_LENGTHS))
        self.txt_note = QLineEdit((key.note or "") if key else "")
        if key:
            self.cmb_type.setCurrentText(key.type)
            self.cmb_length.setCurrentText(key.length)
        form.addRow("Key number", self.txt_number)
        form.addRow("Type", self.cmb_type)
        form.addRow("Length", self.cmb_length)
        form.addRow("Note", self.txt_note)
        form.addRow(_buttons(self))

    def values(self) -> Dict[str, Any]:
        return {
            "key_number": self.txt_number.text(),
            "type": self.cmb_type.currentText(),
            "length": self.cmb_length.currentText(),
            "note": self.txt_note.text(),
        }


class IssueDialog(QDialog):
    """Pick the receiving employee and an optional note."""

    def __init__(self, key: KeyItem, employees: List[Employee], parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle(f"Issue key {key.key_number}")
        form = QFormLayout(self)
        self.cmb_employee = QComboBox()
        for emp in employees:
            self.cmb_employee.addItem(f"{emp.name} ({emp.employee_number})", emp.id)
        self.txt_notes = QLineEdit()
        form.addRow("Employee", self.cmb_employee)
        form.addRow("Notes", self.txt_notes)
        form.addRow(_buttons(self))

    def employee_id(self) -> Optional[str]:
        return self.cmb_employee.currentData()

    def notes(self) -> str:
        return self.txt_notes.text()


class EmployeeDetailDialog(QDialog):
    def __init__(
        self,
        employee: Employee,
        keys: List[KeyItem],
        transactions: List[Transaction],
        parent: Optional[QWidget] = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle(f"{employee.name} ({employee.employee_number})")
        self.resize(720, 560)
        vbox = QVBoxLayout(self)

        info = QLabel(
            f"Type {employee.type} • started {employee.start_date.isoformat()} • "
            f"{employee.years_of_service} years of service"
        )
        vbox.addWidget(info)

        stats = reports.employee_stats(employee.id, keys, transactions)
        stats_box = QGroupBox("Overview")
        grid = QGridLayout(stats_box)
        for col, (title, value) in enumerate(
            [
                ("Total transactions", stats.total_transactions),
                ("Keys received", stats.keys_received),
                ("Keys returned", stats.keys_returned),
                ("Current keys", stats.current_keys),
            ]
        ):
            grid.addWidget(QLabel(title), 0, col)
            lbl = QLabel(str(value))
            lbl.setStyleSheet("QLabel { font-size: 20px; font-weight: 600; }")
            grid.addWidget(lbl, 1, col, alignment=Qt.AlignLeft)
        vbox.addWidget(stats_box)

        held = reports.keys_held_by(keys, employee.id)
        if held:
            vbox.addWidget(QLabel("Current keys"))
            held_table = make_table()
            fill_table(held_table, ["Key", "Type", "Length"], [[k.key_number, k.type, k.length] for k in held])
            vbox.addWidget(held_table)

        vbox.addWidget(QLabel("History"))
        key_map = reports.key_index(keys)
        history = make_table()
        fill_table(
            history,
            ["When", "Action", "Key", "Handled by", "Notes"],
            [
                [format_ts(t), t.action, reports.key_label(t.key_id, key_map), t.handled_by or "", t.notes or ""]
                for t in reports.transactions_for_employee(transactions, employee.id)
            ],
        )
        vbox.addWidget(history, stretch=1)

        close = QDialogButtonBox(QDialogButtonBox.Close)
        close.rejected.connect(self.reject)
        vbox.addWidget(close)


__all__ = [
    "fill_table",
    "make_table",
    "format_ts",
    "EmployeeDialog",
    "KeyDialog",
    "IssueDialog",
    "EmployeeDetailDialog",
]
