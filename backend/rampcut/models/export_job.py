from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rampcut.models.base import Base, TimestampMixin, UUIDMixin


class ExportStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportStatus.COMPLETE, ExportStatus.FAILED)


class ExportJob(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "export_jobs"

    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Idempotency token: one job per request_id, ever
    request_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # Status: QUEUED -> RUNNING -> COMPLETE | FAILED
    status: Mapped[str] = mapped_column(String(20), default=ExportStatus.QUEUED.value, index=True)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    current_stage: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Output (set only on COMPLETE)
    output_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Error handling
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="export_jobs")  # noqa: F821

    def __repr__(self) -> str:
        return f"<ExportJob {self.id} ({self.status})>"
