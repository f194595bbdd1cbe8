from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rampcut.models.base import Base, TimestampMixin, UUIDMixin


def empty_timeline() -> dict[str, Any]:
    return {
        "tracks": [
            {"type": kind, "clips": []}
            for kind in ("VIDEO_A", "VIDEO_B", "OVERLAY_TEXT", "OVERLAY_IMAGE", "AUDIO")
        ]
    }


class Project(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Persisted wire form of the timeline, parsed by rampcut.schemas.timeline
    timeline_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=empty_timeline)

    # Relationships
    assets: Mapped[list["Asset"]] = relationship(  # noqa: F821
        "Asset", back_populates="project", cascade="all, delete-orphan"
    )
    export_jobs: Mapped[list["ExportJob"]] = relationship(  # noqa: F821
        "ExportJob", back_populates="project", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Project {self.name}>"
