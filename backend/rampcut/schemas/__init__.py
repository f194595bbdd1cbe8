from rampcut.schemas.export import ExportJobResponse, ExportRequest
from rampcut.schemas.timeline import ClipData, TimelineData, TrackData, parse_timeline

__all__ = [
    "ExportRequest",
    "ExportJobResponse",
    "TimelineData",
    "TrackData",
    "ClipData",
    "parse_timeline",
]
