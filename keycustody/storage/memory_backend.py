from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..util.idgen import new_id
from .backend import Match, Row, row_matches


class MemoryBackend:
    """In-process stand-in for the hosted database.

    Used when settings select the "memory" backend (demo, offline) and by the
    test suite. Rows are copied in and out so callers never share state with it.
    """

    def __init__(self, tables: Iterable[str] = ("employees", "keys", "transactions")) -> None:
        self.log = logging.getLogger("MemoryBackend")
        self._tables: Dict[str, List[Row]] = {t: [] for t in tables}
        self._lock = threading.Lock()

    def _rows(self, table: str) -> List[Row]:
        if table not in self._tables:
            self._tables[table] = []
        return self._tables[table]

    def select_all(self, table: str) -> List[Row]:
        with self._lock:
            return copy.deepcopy(self._rows(table))

    def get(self, table: str, row_id: str) -> Optional[Row]:
        with self._lock:
            for row in self._rows(table):
                if str(row.get("id")) == str(row_id):
                    return copy.deepcopy(row)
        return None

    def insert(self, table: str, row: Row) -> Row:
        now = datetime.now(timezone.utc).isoformat()
        stored = {"id": new_id(), "created_at": now, **copy.deepcopy(row)}
        if table != "transactions":
            stored.setdefault("updated_at", now)
        with self._lock:
            # newest first, same as the hosted select order
            self._rows(table).insert(0, stored)
        return copy.deepcopy(stored)

    def update(self, table: str, row_id: str, fields: Row, match: Optional[Match] = None) -> Optional[Row]:
        with self._lock:
            for row in self._rows(table):
                if str(row.get("id")) == str(row_id):
                    if not row_matches(row, match):
                        return None
                    row.update(copy.deepcopy(fields))
                    return copy.deepcopy(row)
        return None

    def update_where(self, table: str, fields: Row, match: Match) -> List[Row]:
        out: List[Row] = []
        with self._lock:
            for row in self._rows(table):
                if row_matches(row, match):
                    row.update(copy.deepcopy(fields))
                    out.append(copy.deepcopy(row))
        return out

    def delete(self, table: str, row_id: str) -> bool:
        with self._lock:
            rows = self._rows(table)
            for idx, row in enumerate(rows):
                if str(row.get("id")) == str(row_id):
                    del rows[idx]
                    return True
        return False


__all__ = ["MemoryBackend"]
