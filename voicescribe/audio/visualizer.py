"""Real-time input level visualizer.

Listens to the blocks the capture controller publishes and turns them into
smoothed frequency magnitudes plus one volume meter. It never touches the
capture controller or its device.
"""

import logging
import threading
from typing import Callable, List, Optional

import numpy as np
from pubsub import pub
from rich.console import Group
from rich.text import Text
from scipy import signal

from ..models.audio import LevelBand, LevelFrame
from .capture import LEVEL_TOPIC

logger = logging.getLogger(__name__)

FFT_SIZE = 256
SMOOTHING = 0.8
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

BAND_STYLES = {
    LevelBand.VERY_LOW: "grey50",
    LevelBand.GOOD: "green",
    LevelBand.HIGH: "dark_orange",
    LevelBand.CLIPPING: "red",
}

BAR_GLYPHS = " ▁▂▃▄▅▆▇█"


def classify_magnitude(value: float) -> LevelBand:
    """Partition a normalized magnitude into the four feedback bands."""
    if value > 0.7:
        return LevelBand.CLIPPING
    if value > 0.4:
        return LevelBand.HIGH
    if value > 0.1:
        return LevelBand.GOOD
    return LevelBand.VERY_LOW


def classify_volume(value: float) -> LevelBand:
    if value > 0.7:
        return LevelBand.CLIPPING
    if value > 0.3:
        return LevelBand.GOOD
    return LevelBand.VERY_LOW


class LevelAnalyzer:
    """Windowed FFT with smoothing across frames."""

    def __init__(self, fft_size: int = FFT_SIZE, smoothing: float = SMOOTHING):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.window = signal.get_window('blackman', fft_size)
        self.smoothed = np.zeros(fft_size // 2)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def analyze(self, samples: np.ndarray) -> LevelFrame:
        """Compute one frame from the most recent samples (float, -1.0 - 1.0)."""
        if samples.size < self.fft_size:
            samples = np.pad(samples, (self.fft_size - samples.size, 0))
        else:
            samples = samples[-self.fft_size:]

        spectrum = np.abs(np.fft.rfft(samples * self.window))[:self.bin_count] / self.fft_size
        self.smoothed = self.smoothing * self.smoothed + (1.0 - self.smoothing) * spectrum

        with np.errstate(divide='ignore'):
            decibels = 20.0 * np.log10(self.smoothed)
        normalized = np.clip((decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS), 0.0, 1.0)

        magnitudes = [float(v) for v in normalized]
        volume = float(np.mean(normalized)) if normalized.size else 0.0
        return LevelFrame(
            magnitudes=magnitudes,
            bands=[classify_magnitude(v) for v in magnitudes],
            volume=volume,
            volume_band=classify_volume(volume),
        )

    def reset(self) -> None:
        self.smoothed = np.zeros(self.bin_count)


class LevelVisualizer:
    """Renders live level frames while active."""

    def __init__(self,
                 on_frame: Callable[[LevelFrame], None],
                 on_clear: Optional[Callable[[], None]] = None,
                 fps: float = 30.0,
                 topic: str = LEVEL_TOPIC,
                 analyzer: Optional[LevelAnalyzer] = None):
        """Initialize visualizer.

        Args:
            on_frame: Called with every rendered frame
            on_clear: Called once when the visualizer becomes inactive
            fps: Display refresh rate
            topic: Pub/sub topic carrying raw 16-bit blocks
            analyzer: Frequency analyzer (defaults to a 256-point window)
        """
        self.on_frame = on_frame
        self.on_clear = on_clear
        self.frame_interval = 1.0 / fps
        self.topic = topic
        self.analyzer = analyzer or LevelAnalyzer()

        self.lock = threading.Lock()
        self.latest_samples = np.zeros(0)
        self.active = False
        self.frame_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()

    def set_active(self, active: bool) -> None:
        if active and not self.active:
            self._start()
        elif not active and self.active:
            self._stop()

    def on_block(self, block: bytes) -> None:
        """Pub/sub listener; keeps only the newest samples."""
        samples = np.frombuffer(block, dtype=np.int16).astype(np.float64) / 32768.0
        with self.lock:
            self.latest_samples = samples

    def render_once(self) -> LevelFrame:
        with self.lock:
            samples = self.latest_samples
        frame = self.analyzer.analyze(samples)
        self.on_frame(frame)
        return frame

    def _start(self) -> None:
        self.active = True
        self.analyzer.reset()
        self.stop_event.clear()
        pub.subscribe(self.on_block, self.topic)
        self.frame_thread = threading.Thread(target=self._frame_loop, daemon=True)
        self.frame_thread.name = "LevelVisualizerThread"
        self.frame_thread.start()
        logger.debug("Level visualizer started")

    def _stop(self) -> None:
        self.active = False
        self.stop_event.set()
        pub.unsubscribe(self.on_block, self.topic)
        if self.frame_thread is not None and self.frame_thread is not threading.current_thread():
            self.frame_thread.join(timeout=1.0)
        self.frame_thread = None
        with self.lock:
            self.latest_samples = np.zeros(0)
        if self.on_clear is not None:
            self.on_clear()
        logger.debug("Level visualizer stopped")

    def _frame_loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                self.render_once()
            except Exception as e:
                logger.error(f"Error rendering level frame: {e}")
            self.stop_event.wait(self.frame_interval)


def render_level_frame(frame: LevelFrame, width: int = 64) -> Group:
    """Build a rich renderable with the frequency bars and the volume meter."""
    bars = Text()
    step = max(1, len(frame.magnitudes) // width)
    for index in range(0, len(frame.magnitudes), step):
        value = frame.magnitudes[index]
        glyph = BAR_GLYPHS[min(len(BAR_GLYPHS) - 1, int(value * (len(BAR_GLYPHS) - 1) + 0.5))]
        bars.append(glyph, style=BAND_STYLES[frame.bands[index]])

    meter_width = 30
    filled = int(round(frame.volume * meter_width))
    meter = Text("Level ")
    meter.append("█" * filled, style=BAND_STYLES[frame.volume_band])
    meter.append("░" * (meter_width - filled), style="grey23")
    meter.append(f" {frame.volume_percent}%")
    return Group(bars, meter)
