from __future__ import annotations

import uuid


def new_id() -> str:
    """Generate a row identifier in the same UUID4 text form the hosted database uses."""
    return str(uuid.uuid4())


__all__ = ["new_id"]
