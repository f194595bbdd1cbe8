from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Rampcut API"
    app_version: str = "0.1.0"
    debug: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./data/rampcut.db"
    database_echo: bool = False

    # Local storage (exports/ and temp/ live below this directory)
    storage_path: str = "./storage"

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    # Number of trailing stderr characters kept in a failed job's error
    ffmpeg_stderr_tail: int = 2000

    # Render settings (every intermediate segment is normalized to this profile)
    render_output_width: int = 1280
    render_output_height: int = 720
    render_fps: int = 30
    render_video_preset: str = "veryfast"
    render_crf: int = 20
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 44100

    # Export planning
    # Maximum clip-local length of one constant-speed sub-chunk (seconds).
    # Smaller values track speed ramps more closely at the cost of more encoder runs.
    export_chunk_seconds: float = 0.5
    # Segments whose average speed is below this are rendered as a still-frame hold
    export_hold_epsilon: float = 0.01
    # What fills the rest of a clip once its source media runs out
    export_exhaustion_policy: Literal["hold_last_frame", "black"] = "hold_last_frame"
    # Which clip is shown when clips overlap on the same video track
    export_video_overlap_policy: Literal["last_wins", "first_wins"] = "last_wins"
    # Upper bound used for assets that were never probed (seconds)
    export_unknown_source_duration: float = 10000.0
    # Number of phase-1 segment renders allowed to run at once
    export_segment_concurrency: int = 1

    # Export dispatch: in-process background task or Celery worker
    export_backend: Literal["background", "celery"] = "background"
    redis_url: str = "redis://localhost:6379/0"

    # Overlay text
    overlay_font_path: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


@lru_cache
def get_settings() -> Settings:
    return Settings()
