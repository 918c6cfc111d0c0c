"""
Read-side base for the workflow kernel.

Selectors answer worklist, submission, stats and notification queries.
They take the caller's ``Session``, never add, flush or commit, and hand
back frozen domain snapshots instead of ORM rows, so a caller can keep a
result after its session closes.

Selectors may import from ``db``, ``models`` and ``domain`` only.
"""

from typing import Generic, Protocol, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session


class _Snapshotting(Protocol):
    def to_dto(self): ...


RowType = TypeVar("RowType", bound=_Snapshotting)


class BaseSelector(Generic[RowType]):
    """Holds the session and converts ORM rows to snapshots."""

    def __init__(self, session: Session):
        self.session = session

    def _snapshots(self, stmt: Select) -> list:
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def _snapshot_or_none(self, stmt: Select):
        row = self.session.execute(stmt).scalar_one_or_none()
        return row.to_dto() if row is not None else None
