"""SQLAlchemy ORM models for the project catalog."""

from biorepo.models.base import Base
from biorepo.models.project import ProjectRecord

__all__ = [
    "Base",
    "ProjectRecord",
]
