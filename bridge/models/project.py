"""Per-project repository mapping."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bridge.models.base import Base


class ProjectSetting(Base):
    """Which GitLab repository and branch a local project syncs to."""

    __tablename__ = "project_settings"

    project_id: Mapped[str] = mapped_column(String, primary_key=True)
    repo_name: Mapped[str] = mapped_column(String, nullable=False)
    repo_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    branch: Mapped[str] = mapped_column(String, nullable=False, default="main")
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
