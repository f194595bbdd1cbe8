from rampcut.render.audio_mixer import AudioMixer
from rampcut.render.ffmpeg import FFmpegRunner
from rampcut.render.layer_compositor import LayerCompositor
from rampcut.render.pipeline import ProgressTracker, RenderPipeline
from rampcut.render.segment_planner import plan_clip_segments, plan_video_program

__all__ = [
    "RenderPipeline",
    "ProgressTracker",
    "FFmpegRunner",
    "AudioMixer",
    "LayerCompositor",
    "plan_clip_segments",
    "plan_video_program",
]
