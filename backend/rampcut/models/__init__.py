from rampcut.models.asset import Asset
from rampcut.models.base import Base
from rampcut.models.export_job import ExportJob, ExportStatus
from rampcut.models.project import Project

__all__ = [
    "Base",
    "Project",
    "Asset",
    "ExportJob",
    "ExportStatus",
]
