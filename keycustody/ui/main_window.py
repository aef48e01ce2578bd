from __future__ import annotations

import getpass
import logging
import sys
from typing import Callable, Dict, List, Optional

from PyQt5.QtWidgets import (
    QApplication,
    QComboBox,
    QDialog,
    QDoubleSpinBox,
    QFormLayout,
    QGridLayout,
    QGroupBox,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QTableWidget,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from ..app import build_store
from ..config import AppSettings, ConfigManager
from ..errors import KeyCustodyError
from ..services import reports
from ..services.key_store import KeyStore
from .dialogs import EmployeeDetailDialog, EmployeeDialog, IssueDialog, KeyDialog, fill_table, format_ts, make_table

STATUS_LABELS = {"available": "Available", "issued": "Issued"}
ACTION_LABELS = {"issue": "Issued", "return": "Returned"}


class MainWindow(QMainWindow):
    def __init__(self, config: ConfigManager | None = None, store: KeyStore | None = None) -> None:
        super().__init__()
        self.setWindowTitle("Key Custody")
        self.setMinimumSize(900, 600)
        self.log = logging.getLogger("UI")

        self.config = config or ConfigManager()
        self.settings: AppSettings = self.config.load()
        self.store = store

        self.tabs = QTabWidget()
        self.tabs.addTab(self._build_dashboard_tab(), "Dashboard")
        self.tabs.addTab(self._build_employees_tab(), "Employees")
        self.tabs.addTab(self._build_keys_tab(), "Keys")
        self.tabs.addTab(self._build_transactions_tab(), "Transactions")
        self.tabs.addTab(self._build_settings_tab(), "Settings")
        self.setCentralWidget(self.tabs)

        self._set_data_tabs_enabled(self.store is not None)
        if self.store is None:
            self.tabs.setCurrentIndex(4)
        else:
            self._sync()

    # -------------------------
    # Tabs
    # -------------------------
    def _build_dashboard_tab(self) -> QWidget:
        tab = QWidget()
        vbox = QVBoxLayout(tab)

        totals = QGroupBox("Overview")
        grid = QGridLayout(totals)
        self._dash_labels: Dict[str, QLabel] = {}
        for col, (attr, title) in enumerate(
            [
                ("total_employees", "Employees"),
                ("available_keys", "Available keys"),
                ("issued_keys", "Issued keys"),
                ("today_transactions", "Transactions today"),
            ]
        ):
            grid.addWidget(QLabel(title), 0, col)
            value = QLabel("0")
            value.setStyleSheet("QLabel { font-size: 24px; font-weight: 600; }")
            grid.addWidget(value, 1, col)
            self._dash_labels[attr] = value
        vbox.addWidget(totals)

        row = QHBoxLayout()
        recent_box = QGroupBox("Recent activity")
        recent_layout = QVBoxLayout(recent_box)
        self.tbl_recent = make_table()
        recent_layout.addWidget(self.tbl_recent)
        row.addWidget(recent_box, stretch=2)

        side = QVBoxLayout()
        self.availability_box = QGroupBox("Key status per type")
        self.availability_layout = QVBoxLayout(self.availability_box)
        side.addWidget(self.availability_box)
        staff_box = QGroupBox("Staff")
        staff_layout = QVBoxLayout(staff_box)
        self.lbl_staff = QLabel("")
        staff_layout.addWidget(self.lbl_staff)
        side.addWidget(staff_box)
        side.addStretch(1)
        row.addLayout(side, stretch=1)
        vbox.addLayout(row, stretch=1)

        actions = QHBoxLayout()
        btn_add_key = QPushButton("Add key")
        btn_add_key.clicked.connect(self._on_add_key)
        btn_refresh = QPushButton("Refresh")
        btn_refresh.clicked.connect(self._on_refresh)
        actions.addStretch(1)
        actions.addWidget(btn_add_key)
        actions.addWidget(btn_refresh)
        vbox.addLayout(actions)
        return tab

    def _build_employees_tab(self) -> QWidget:
        tab = QWidget()
        vbox = QVBoxLayout(tab)
        top = QHBoxLayout()
        self.txt_employee_search = QLineEdit()
        self.txt_employee_search.setPlaceholderText("Search by name or employee number")
        self.txt_employee_search.textChanged.connect(lambda _: self._render_employees())
        top.addWidget(self.txt_employee_search, stretch=1)
        self.lbl_employee_count = QLabel("")
        top.addWidget(self.lbl_employee_count)
        vbox.addLayout(top)

        self.tbl_employees = make_table()
        self.tbl_employees.doubleClicked.connect(lambda _: self._on_employee_detail())
        vbox.addWidget(self.tbl_employees, stretch=1)

        vbox.addLayout(
            self._button_row(
                [
                    ("Add employee", self._on_add_employee),
                    ("Edit", self._on_edit_employee),
                    ("Details", self._on_employee_detail),
                    ("Delete", self._on_delete_employee),
                ]
            )
        )
        self._employee_rows: List[str] = []
        return tab

    def _build_keys_tab(self) -> QWidget:
        tab = QWidget()
        vbox = QVBoxLayout(tab)
        top = QHBoxLayout()
        self.txt_key_search = QLineEdit()
        self.txt_key_search.setPlaceholderText("Search by key number or note")
        self.txt_key_search.textChanged.connect(lambda _: self._render_keys())
        self.cmb_key_status = QComboBox()
        self.cmb_key_status.addItem("All statuses", "all")
        self.cmb_key_status.addItem("Available", "available")
        self.cmb_key_status.addItem("Issued", "issued")
        self.cmb_key_status.currentIndexChanged.connect(lambda _: self._render_keys())
        top.addWidget(self.txt_key_search, stretch=1)
        top.addWidget(self.cmb_key_status)
        self.lbl_key_count = QLabel("")
        top.addWidget(self.lbl_key_count)
        vbox.addLayout(top)

        self.tbl_keys = make_table()
        vbox.addWidget(self.tbl_keys, stretch=1)

        vbox.addLayout(
            self._button_row(
                [
                    ("Add key", self._on_add_key),
                    ("Edit", self._on_edit_key),
                    ("Issue", self._on_issue_key),
                    ("Return", self._on_return_key),
                    ("Delete", self._on_delete_key),
                ]
            )
        )
        self._key_rows: List[str] = []
        return tab

    def _build_transactions_tab(self) -> QWidget:
        tab = QWidget()
        vbox = QVBoxLayout(tab)

        self.lbl_ledger_stats = QLabel("")
        self.lbl_ledger_stats.setStyleSheet("QLabel { font-size: 14px; font-weight: 600; }")
        vbox.addWidget(self.lbl_ledger_stats)

        top = QHBoxLayout()
        self.txt_tx_search = QLineEdit()
        self.txt_tx_search.setPlaceholderText("Search employee, key or notes")
        self.txt_tx_search.textChanged.connect(lambda _: self._render_transactions())
        self.cmb_tx_action = QComboBox()
        for label, value in (("All actions", "all"), ("Issued", "issue"), ("Returned", "return")):
            self.cmb_tx_action.addItem(label, value)
        self.cmb_tx_action.currentIndexChanged.connect(lambda _: self._render_transactions())
        self.cmb_tx_date = QComboBox()
        for label, value in (("All time", "all"), ("Today", "today"), ("Last 7 days", "week"), ("Last 30 days", "month")):
            self.cmb_tx_date.addItem(label, value)
        self.cmb_tx_date.currentIndexChanged.connect(lambda _: self._render_transactions())
        top.addWidget(self.txt_tx_search, stretch=1)
        top.addWidget(self.cmb_tx_action)
        top.addWidget(self.cmb_tx_date)
        vbox.addLayout(top)

        self.tbl_transactions = make_table()
        vbox.addWidget(self.tbl_transactions, stretch=1)
        self.lbl_tx_summary = QLabel("")
        vbox.addWidget(self.lbl_tx_summary)
        return tab

    def _build_settings_tab(self) -> QWidget:
        tab = QWidget()
        form = QFormLayout(tab)

        # Field definitions: {label: (attr_name, is_secret)}
        fields: Dict[str, tuple[str, bool]] = {
            "Supabase URL": ("supabase_url", False),
            "Supabase anon key": ("supabase_anon_key", True),
            "Employees table": ("employees_table", False),
            "Keys table": ("keys_table", False),
            "Transactions table": ("transactions_table", False),
            "Operator name": ("operator_name", False),
            "Log level": ("log_level", False),
        }

        self._settings_inputs: Dict[str, QWidget] = {}
        self.cmb_backend = QComboBox()
        self.cmb_backend.addItems(["supabase", "memory"])
        self.cmb_backend.setCurrentText(self.settings.backend)
        form.addRow(QLabel("Backend"), self.cmb_backend)

        for label, (attr, secret) in fields.items():
            edit = QLineEdit()
            value = getattr(self.settings, attr, "")
            edit.setText(str(value) if value is not None else "")
            if secret:
                edit.setEchoMode(QLineEdit.Password)
            edit.setPlaceholderText(attr)
            self._settings_inputs[attr] = edit
            form.addRow(QLabel(label), edit)

        timeout = QDoubleSpinBox()
        timeout.setRange(1.0, 300.0)
        timeout.setValue(float(self.settings.http_timeout))
        self._settings_inputs["http_timeout"] = timeout
        form.addRow(QLabel("HTTP timeout (s)"), timeout)

        save_btn = QPushButton("Save settings and reconnect")
        save_btn.clicked.connect(self._on_save_settings)
        form.addRow(QWidget(), save_btn)
        return tab

    def _button_row(self, buttons: List[tuple[str, Callable[[], None]]]) -> QHBoxLayout:
        row = QHBoxLayout()
        row.addStretch(1)
        for label, handler in buttons:
            btn = QPushButton(label)
            btn.clicked.connect(handler)
            row.addWidget(btn)
        return row

    def _set_data_tabs_enabled(self, enabled: bool) -> None:
        for idx in range(4):
            self.tabs.setTabEnabled(idx, enabled)

    # -------------------------
    # Rendering (snapshot -> widgets)
    # -------------------------
    def _sync(self) -> None:
        if self.store is None:
            return
        try:
            self.store.refresh()
        except KeyCustodyError as exc:
            self.log.exception("Load failed")
            self._critical_message("Database", f"Could not load data: {exc}")
        self._render_all()

    def _render_all(self) -> None:
        self._render_dashboard()
        self._render_employees()
        self._render_keys()
        self._render_transactions()

    def _render_dashboard(self) -> None:
        if self.store is None:
            return
        employees = self.store.list_employees()
        keys = self.store.list_keys()
        transactions = self.store.list_transactions()
        stats = reports.dashboard_stats(employees, keys, transactions)
        for attr, lbl in self._dash_labels.items():
            lbl.setText(str(getattr(stats, attr)))

        emp_map = reports.employee_index(employees)
        key_map = reports.key_index(keys)
        fill_table(
            self.tbl_recent,
            ["When", "Action", "Key", "Employee"],
            [
                [format_ts(t), ACTION_LABELS[t.action], reports.key_label(t.key_id, key_map), reports.employee_label(t.employee_id, emp_map)]
                for t in stats.recent
            ],
        )

        while self.availability_layout.count():
            item = self.availability_layout.takeAt(0)
            if item.widget() is not None:
                item.widget().setParent(None)
        for avail in stats.availability:
            self.availability_layout.addWidget(
                QLabel(f"Type {avail.key_type}: {avail.available} / {avail.total} available ({avail.percentage:.0f}%)")
            )
        by_type = " • ".join(f"{t}: {n}" for t, n in stats.employees_by_type.items())
        self.lbl_staff.setText(f"{by_type}\nAverage years of service: {stats.average_years_of_service}")

    def _render_employees(self) -> None:
        if self.store is None:
            return
        employees = reports.filter_employees(self.store.list_employees(), self.txt_employee_search.text())
        keys = self.store.list_keys()
        self._employee_rows = [e.id for e in employees]
        fill_table(
            self.tbl_employees,
            ["Name", "Employee number", "Type", "Start date", "Years of service", "Keys held"],
            [
                [e.name, e.employee_number, e.type, e.start_date.isoformat(), str(e.years_of_service), str(len(reports.keys_held_by(keys, e.id)))]
                for e in employees
            ],
        )
        self.lbl_employee_count.setText(f"{len(employees)} employees")

    def _render_keys(self) -> None:
        if self.store is None:
            return
        keys = reports.filter_keys(
            self.store.list_keys(), self.txt_key_search.text(), self.cmb_key_status.currentData() or "all"
        )
        emp_map = reports.employee_index(self.store.list_employees())
        self._key_rows = [k.id for k in keys]
        fill_table(
            self.tbl_keys,
            ["Key", "Type", "Length", "Status", "Issued to", "Note"],
            [
                [
                    k.key_number,
                    k.type,
                    k.length,
                    STATUS_LABELS[k.status],
                    reports.employee_label(k.assigned_to, emp_map) if k.assigned_to else "",
                    k.note or "",
                ]
                for k in keys
            ],
        )
        self.lbl_key_count.setText(f"{len(keys)} keys")

    def _render_transactions(self) -> None:
        if self.store is None:
            return
        transactions = self.store.list_transactions()
        emp_map = reports.employee_index(self.store.list_employees())
        key_map = reports.key_index(self.store.list_keys())
        stats = reports.ledger_stats(transactions)
        self.lbl_ledger_stats.setText(
            f"Total {stats.total} • Today {stats.today} • Issued {stats.issued} • Returned {stats.returned}"
        )
        shown = reports.filter_transactions(
            transactions,
            emp_map,
            key_map,
            search=self.txt_tx_search.text(),
            action=self.cmb_tx_action.currentData() or "all",
            date_filter=self.cmb_tx_date.currentData() or "all",
        )
        fill_table(
            self.tbl_transactions,
            ["When", "Action", "Key", "Employee", "Handled by", "Notes"],
            [
                [
                    format_ts(t),
                    ACTION_LABELS[t.action],
                    reports.key_label(t.key_id, key_map),
                    reports.employee_label(t.employee_id, emp_map),
                    t.handled_by or "",
                    t.notes or "",
                ]
                for t in shown
            ],
        )
        if shown:
            issued = sum(1 for t in shown if t.action == "issue")
            self.lbl_tx_summary.setText(
                f"{len(shown)} shown • {issued} issued • {len(shown) - issued} returned • "
                f"{reports.unique_employee_count(shown)} employees"
            )
        else:
            self.lbl_tx_summary.setText("No transactions match the current filters")

    # -------------------------
    # Handlers
    # -------------------------
    def _run(self, title: str, action: Callable[[], object]) -> bool:
        """Invoke a store operation, report failures, re-render on success."""
        try:
            action()
        except KeyCustodyError as exc:
            self.log.exception("%s failed", title)
            self._critical_message(title, str(exc))
            return False
        self._render_all()
        return True

    def _selected(self, table: QTableWidget, ids: List[str]) -> Optional[str]:
        row = table.currentRow()
        if row < 0 or row >= len(ids):
            self._info_message("Nothing selected", "Select a row first.")
            return None
        return ids[row]

    def _operator(self) -> str:
        return self.settings.operator_name or getpass.getuser()

    def _on_refresh(self) -> None:
        self._sync()

    def _on_add_employee(self) -> None:
        dlg = EmployeeDialog(self)
        if dlg.exec_() != QDialog.Accepted:
            return
        self._run("Add employee", lambda: self.store.add_employee(dlg.values()))

    def _on_edit_employee(self) -> None:
        emp_id = self._selected(self.tbl_employees, self._employee_rows)
        employee = self.store.find_employee(emp_id) if emp_id else None
        if employee is None:
            return
        dlg = EmployeeDialog(self, employee)
        if dlg.exec_() != QDialog.Accepted:
            return
        self._run("Edit employee", lambda: self.store.update_employee(employee.id, dlg.values()))

    def _on_delete_employee(self) -> None:
        emp_id = self._selected(self.tbl_employees, self._employee_rows)
        employee = self.store.find_employee(emp_id) if emp_id else None
        if employee is None:
            return
        held = len(reports.keys_held_by(self.store.list_keys(), employee.id))
        question = f"Delete {employee.name}?"
        if held:
            question += f"\n{held} key(s) assigned to this employee will be returned to the pool."
        if QMessageBox.question(self, "Delete employee", question) != QMessageBox.Yes:
            return
        self._run("Delete employee", lambda: self.store.delete_employee(employee.id))

    def _on_employee_detail(self) -> None:
        emp_id = self._selected(self.tbl_employees, self._employee_rows)
        employee = self.store.find_employee(emp_id) if emp_id else None
        if employee is None:
            return
        EmployeeDetailDialog(employee, self.store.list_keys(), self.store.list_transactions(), self).exec_()

    def _on_add_key(self) -> None:
        if self.store is None:
            return
        dlg = KeyDialog(self)
        if dlg.exec_() != QDialog.Accepted:
            return
        self._run("Add key", lambda: self.store.add_key(dlg.values()))

    def _on_edit_key(self) -> None:
        key_id = self._selected(self.tbl_keys, self._key_rows)
        key = self.store.find_key(key_id) if key_id else None
        if key is None:
            return
        dlg = KeyDialog(self, key)
        if dlg.exec_() != QDialog.Accepted:
            return
        self._run("Edit key", lambda: self.store.update_key(key.id, dlg.values()))

    def _on_delete_key(self) -> None:
        key_id = self._selected(self.tbl_keys, self._key_rows)
        key = self.store.find_key(key_id) if key_id else None
        if key is None:
            return
        if QMessageBox.question(self, "Delete key", f"Delete key {key.key_number}?") != QMessageBox.Yes:
            return
        self._run("Delete key", lambda: self.store.delete_key(key.id))

    def _on_issue_key(self) -> None:
        key_id = self._selected(self.tbl_keys, self._key_rows)
        key = self.store.find_key(key_id) if key_id else None
        if key is None:
            return
        if key.is_issued:
            self._info_message("Issue key", f"Key {key.key_number} is already issued.")
            return
        employees = sorted(self.store.list_employees(), key=lambda e: e.name.lower())
        if not employees:
            self._info_message("No employees", "Register an employee before issuing keys.")
            return
        dlg = IssueDialog(key, employees, self)
        if dlg.exec_() != QDialog.Accepted or not dlg.employee_id():
            return
        self._run("Issue key", lambda: self.store.issue_key(key.id, dlg.employee_id(), self._operator(), dlg.notes()))

    def _on_return_key(self) -> None:
        key_id = self._selected(self.tbl_keys, self._key_rows)
        key = self.store.find_key(key_id) if key_id else None
        if key is None:
            return
        if not key.is_issued:
            self._info_message("Return key", f"Key {key.key_number} is not issued.")
            return
        notes, ok = QInputDialog.getText(self, f"Return key {key.key_number}", "Notes (optional):")
        if not ok:
            return
        self._run("Return key", lambda: self.store.return_key(key.id, self._operator(), notes))

    def _on_save_settings(self) -> None:
        self.settings.backend = self.cmb_backend.currentText()  # type: ignore[assignment]
        for attr, widget in self._settings_inputs.items():
            if isinstance(widget, QDoubleSpinBox):
                setattr(self.settings, attr, float(widget.value()))
            elif isinstance(widget, QLineEdit):
                setattr(self.settings, attr, widget.text().strip())

        try:
            self.config.save(self.settings)
        except OSError as exc:
            self._critical_message("Save Failed", f"Could not save settings: {exc}")
            return

        try:
            self.store = build_store(self.config)
        except KeyCustodyError as exc:
            self.log.exception("Reconnect failed")
            self.store = None
            self._set_data_tabs_enabled(False)
            self._critical_message("Database", f"Settings saved, but could not connect: {exc}")
            return
        self._set_data_tabs_enabled(True)
        self._sync()
        self._info_message("Saved", "Settings saved to settings.json at project root.")

    def _critical_message(self, title: str, message: str) -> None:
        QMessageBox.critical(self, title, message)

    def _info_message(self, title: str, message: str) -> None:
        QMessageBox.information(self, title, message)


def launch_app() -> None:
    app = QApplication(sys.argv)
    config = ConfigManager()
    store: Optional[KeyStore]
    try:
        store = build_store(config)
    except KeyCustodyError:
        logging.getLogger("UI").exception("Backend not configured")
        store = None
    window = MainWindow(config, store)
    window.show()
    sys.exit(app.exec_())


__all__ = ["MainWindow", "launch_app"]
