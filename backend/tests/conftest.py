"""
Pytest fixtures for rampcut backend tests.

Every test runs against a private SQLite database file and a private
storage directory, so nothing here needs FFmpeg or local media files. Encoder
invocations are replaced by a fake runner that just creates the output file.
"""

import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from rampcut.config import get_settings
from rampcut.engine.timeline import AssetInfo, Clip, Project, Track, TrackKind
from rampcut.models import Asset, Base
from rampcut.models import Project as ProjectModel


@pytest.fixture(autouse=True)
def storage_dir(tmp_path: Path, monkeypatch) -> Path:
    """Point settings.storage_path at a per-test directory."""
    storage = tmp_path / "storage"
    monkeypatch.setenv("STORAGE_PATH", str(storage))
    get_settings.cache_clear()
    yield storage
    get_settings.cache_clear()


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="rampcut_test_") as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path: Path):
    # File-backed so job runner threads get their own connections
    engine = create_engine(
        f"sqlite:///{tmp_path / 'rampcut.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Same contract as ``rampcut.models.database.get_sync_db``."""
    maker = sessionmaker(db_engine, class_=Session, expire_on_commit=False)

    @contextmanager
    def factory():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def make_project(session_factory, temp_output_dir: Path):
    """Insert a project (and its assets) and return the project id."""

    def _make(timeline: dict[str, Any], assets: list[dict[str, Any]] | None = None) -> str:
        with session_factory() as session:
            project = ProjectModel(name="Test project", timeline_data=timeline)
            session.add(project)
            session.flush()
            for data in assets or []:
                session.add(
                    Asset(
                        project_id=project.id,
                        name=data.get("name", data["id"]),
                        type=data.get("type", "video"),
                        path=data.get("path", str(temp_output_dir / f"{data['id']}.mp4")),
                        **{k: v for k, v in data.items() if k in ("id", "duration", "fps", "has_audio")},
                    )
                )
            return project.id

    return _make


@pytest.fixture
def simple_timeline() -> dict[str, Any]:
    """One 3s video clip with a 1x -> 2x ramp and one text overlay."""
    return {
        "tracks": [
            {
                "type": "VIDEO_A",
                "clips": [
                    {
                        "id": "clip-video",
                        "asset_id": "asset-video",
                        "start_time": 0,
                        "duration": 3,
                        "speedKeyframes": [{"time": 0, "speed": 1}, {"time": 3, "speed": 2}],
                    }
                ],
            },
            {"type": "VIDEO_B", "clips": []},
            {
                "type": "OVERLAY_TEXT",
                "clips": [
                    {
                        "id": "clip-title",
                        "start_time": 0.5,
                        "duration": 2,
                        "properties": {"text": "Hello", "fontSize": 32},
                    }
                ],
            },
            {"type": "OVERLAY_IMAGE", "clips": []},
            {"type": "AUDIO", "clips": []},
        ]
    }


@pytest.fixture
def video_asset() -> dict[str, Any]:
    return {"id": "asset-video", "duration": 20.0, "fps": 30.0, "has_audio": True}


# =============================================================================
# Engine snapshots
# =============================================================================


def build_project(tracks: dict[TrackKind, list[Clip]], project_id: str = "project-1") -> Project:
    """Engine snapshot with every track kind present."""
    return Project(
        id=project_id,
        tracks=tuple(
            Track(id=f"{project_id}:{kind.value}", kind=kind, clips=tuple(tracks.get(kind, [])))
            for kind in TrackKind
        ),
    )


@pytest.fixture
def project_factory():
    return build_project


@pytest.fixture
def video_asset_info(temp_output_dir: Path) -> AssetInfo:
    return AssetInfo(
        id="asset-video",
        path=str(temp_output_dir / "source.mp4"),
        duration=20.0,
        fps=30.0,
        has_audio=True,
    )


# =============================================================================
# Encoder
# =============================================================================


@pytest.fixture
def fake_runner():
    """FFmpegRunner stand-in: every invocation writes its last argument (the output file)."""

    async def _run(args, **kwargs):
        output = Path(args[-1])
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"\x00")

    runner = MagicMock()
    runner.run = AsyncMock(side_effect=_run)
    return runner
