"""SQLAlchemy ORM models for the GitLab bridge."""

from bridge.models.base import Base
from bridge.models.project import ProjectSetting
from bridge.models.temp_repo import TempRepo

__all__ = [
    "Base",
    "ProjectSetting",
    "TempRepo",
]
