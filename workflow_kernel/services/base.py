"""
Write-side base for the workflow kernel.

Services stage changes in the caller's transaction and ``flush()`` so
constraint and version conflicts surface inside the service call.  They
never commit or roll back: the gateway's unit of work does, which is how
a request row and its history entry land together or not at all.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from workflow_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(Generic[ModelType]):

    def __init__(self, session: Session):
        self.session = session

    def _stage(self, *models: Base) -> None:
        """Add new rows and flush them within the open transaction."""
        self.session.add_all(models)
        self.session.flush()
