"""Audio capture and level visualization."""

from .capture import CaptureController, LEVEL_TOPIC, CAPTURE_MIME_TYPE
from .visualizer import LevelAnalyzer, LevelVisualizer, render_level_frame

__all__ = [
    'CaptureController',
    'LEVEL_TOPIC',
    'CAPTURE_MIME_TYPE',
    'LevelAnalyzer',
    'LevelVisualizer',
    'render_level_frame',
]
