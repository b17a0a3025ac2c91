"""Catalog project model."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from biorepo.models.base import Base


class ProjectRecord(Base):
    """One repository project and its lifecycle timestamps."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    bucket: Mapped[str | None] = mapped_column(String, nullable=True)
    prefix: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile: Mapped[str | None] = mapped_column(String, nullable=True)
    scanned_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[str | None] = mapped_column(Text, nullable=True)
