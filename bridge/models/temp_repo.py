"""Staging repository records."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bridge.models.base import Base


class TempRepo(Base):
    """A temporary GitLab repository awaiting deletion by the sweep."""

    __tablename__ = "temp_repos"

    temp_repo_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    original_repo_name: Mapped[str] = mapped_column(String, nullable=False)
    temp_repo_name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    owner: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
