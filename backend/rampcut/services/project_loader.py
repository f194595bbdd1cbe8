"""Assemble the immutable engine snapshot for a stored project."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from rampcut.engine.timeline import AssetInfo, Project
from rampcut.exceptions import ProjectNotFoundError
from rampcut.models.asset import Asset
from rampcut.models.project import Project as ProjectModel
from rampcut.schemas.timeline import parse_timeline


def asset_info(asset: Asset) -> AssetInfo:
    return AssetInfo(
        id=asset.id,
        path=asset.path,
        duration=asset.duration,
        fps=asset.fps,
        has_audio=bool(asset.has_audio),
        kind=asset.type,
    )


def load_project(db: Session, project_id: str) -> tuple[Project, dict[str, AssetInfo]]:
    """Load a project's timeline snapshot and the metadata of the assets it uses.

    Raises:
        ProjectNotFoundError: If the project does not exist
        ValidationError: If the stored timeline is malformed
    """
    row = db.get(ProjectModel, project_id)
    if row is None:
        raise ProjectNotFoundError(project_id)

    project = parse_timeline(row.id, row.timeline_data, name=row.name)

    asset_ids = {
        clip.asset_id
        for track in project.tracks
        for clip in track.clips
        if clip.asset_id
    }
    assets: dict[str, AssetInfo] = {}
    if asset_ids:
        result = db.execute(select(Asset).where(Asset.id.in_(asset_ids)))
        assets = {a.id: asset_info(a) for a in result.scalars().all()}
    return project, assets
