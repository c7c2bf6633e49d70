"""db: local SQLite persistence (SQLAlchemy) for the record store.

Public exports
--------------
- ``Base`` and ``metadata``
- ORM rows in ``contractorbook.db.models``
- Engine/session helpers in ``contractorbook.db.client``
"""

from __future__ import annotations

from .models import Base, ExpenseRow, JobRow, SettingRow

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "ExpenseRow",
    "JobRow",
    "SettingRow",
]
