from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol

Row = Dict[str, Any]
# Column -> required current value; None means the column must be NULL
Match = Mapping[str, Optional[str]]


class TableBackend(Protocol):
    """What the key store needs from the hosted database.

    Every method raises PersistenceError on failure. Rows use the external
    snake_case schema; ids and created_at are assigned by the backend.
    """

    def select_all(self, table: str) -> List[Row]:
        """All rows ordered by created_at, newest first."""
        ...

    def get(self, table: str, row_id: str) -> Optional[Row]:
        """One row by id; None when it does not exist."""
        ...

    def insert(self, table: str, row: Row) -> Row:
        ...

    def update(self, table: str, row_id: str, fields: Row, match: Optional[Match] = None) -> Optional[Row]:
        """Update one row; None when the row is missing or `match` did not hold."""
        ...

    def update_where(self, table: str, fields: Row, match: Match) -> List[Row]:
        ...

    def delete(self, table: str, row_id: str) -> bool:
        ...


def row_matches(row: Row, match: Optional[Match]) -> bool:
    if not match:
        return True
    for col, expected in match.items():
        actual = row.get(col)
        if expected is None:
            if actual is not None:
                return False
        elif str(actual) != str(expected):
            return False
    return True


__all__ = ["Row", "Match", "TableBackend", "row_matches"]
