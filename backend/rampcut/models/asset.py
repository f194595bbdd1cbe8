from sqlalchemy import Boolean, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rampcut.models.base import Base, TimestampMixin, UUIDMixin


class Asset(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "assets"

    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Type: video, audio, image
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Local file the encoder reads
    path: Mapped[str] = mapped_column(String(1000), nullable=False)

    # Probed media metadata (null when never probed)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    fps: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_audio: Mapped[bool] = mapped_column(Boolean, default=False)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="assets")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Asset {self.name} ({self.type})>"
