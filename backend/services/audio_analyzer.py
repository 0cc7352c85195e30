"""Audio analysis for audio-reactive neon control.

Plays a bundled WAV file in simulated time and produces, once per tick, a
byte-resolution (0-255) frequency spectrum the same way a browser
AnalyserNode does: Blackman window, 1024-point FFT, 0.3 frame smoothing
and a -100..-30 dB mapping onto 0..255.

From that spectrum the analyzer picks 5 fixed bins for each of the low,
mid and high bands, normalises them to [0, 1], applies asymmetric
smoothing (fast attack, slow release) and multiplies by the configured
per-bin weights. The 15 weighted values are what NeonManager consumes.
"""

import logging
import os

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)

# -- Analysis constants ------------------------------------------------------
FFT_SIZE = 1024
SAMPLE_RATE = 48000
SMOOTHING_TIME_CONSTANT = 0.3
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

# -- Band bins (bin width at 48 kHz / 1024 = 46.875 Hz) ----------------------
NUM_LOW_BINS = 5
NUM_MID_BINS = 5
NUM_HIGH_BINS = 5
NUM_TOTAL_BINS = NUM_LOW_BINS + NUM_MID_BINS + NUM_HIGH_BINS

LOW_BIN_INDICES = [1, 2, 3, 4, 5]           # ~47-234 Hz
MID_BIN_INDICES = [20, 30, 40, 50, 60]      # ~0.9-2.8 kHz
HIGH_BIN_INDICES = [80, 90, 100, 110, 120]  # ~3.8-5.6 kHz
BIN_INDICES = LOW_BIN_INDICES + MID_BIN_INDICES + HIGH_BIN_INDICES

DEFAULT_FAST_ALPHA = 0.9
DEFAULT_SLOW_ALPHA = 0.2

AUDIO_FILE_PATH = os.environ.get(
    "NEONROOM_AUDIO_FILE",
    os.path.join(os.path.dirname(__file__), "..", "assets", "audio", "makeitup.wav"),
)


class WavSpectrumSource:
    """Decoded audio file with a play head that advances in simulated time."""

    def __init__(self, path=AUDIO_FILE_PATH, fft_size=FFT_SIZE, loop=True):
        self.path = path
        self.fft_size = fft_size
        self.loop = loop
        self.samples = None
        self.sample_rate = SAMPLE_RATE
        self.position = 0.0  # seconds
        self.window = np.blackman(fft_size)
        self._smoothed = np.zeros(fft_size // 2)

    def open(self):
        data, self.sample_rate = sf.read(self.path, dtype="float32", always_2d=True)
        self.samples = data.mean(axis=1)
        self.position = 0.0
        self._smoothed[:] = 0.0
        logger.info("Loaded %s: %.1fs at %d Hz", os.path.basename(self.path),
                    self.duration, self.sample_rate)

    @property
    def duration(self):
        if self.samples is None:
            return 0.0
        return len(self.samples) / float(self.sample_rate)

    def seek(self, seconds):
        self.position = max(0.0, min(seconds, self.duration))

    def advance(self, delta_time):
        """Move the play head. Returns False once a non-looping file ends."""
        self.position += delta_time
        if self.position < self.duration:
            return True
        if self.loop and self.duration > 0:
            self.position %= self.duration
            return True
        self.position = self.duration
        return False

    def byte_frequency_data(self):
        start = int(self.position * self.sample_rate)
        frame = self.samples[start:start + self.fft_size]
        if len(frame) < self.fft_size:
            frame = np.pad(frame, (0, self.fft_size - len(frame)))

        spectrum = np.abs(np.fft.rfft(frame * self.window))[: self.fft_size // 2]
        spectrum /= self.fft_size
        self._smoothed = (SMOOTHING_TIME_CONSTANT * self._smoothed
                          + (1.0 - SMOOTHING_TIME_CONSTANT) * spectrum)

        db = 20.0 * np.log10(np.maximum(self._smoothed, 1e-12))
        scaled = 255.0 * (db - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def reset(self):
        self._smoothed[:] = 0.0

    def close(self):
        self.samples = None


class AudioAnalyzer:
    """Weighted low/mid/high band magnitudes from the playing audio.

    If the audio file cannot be opened the analyzer stays uninitialised and
    every ``update`` returns None, so audio-reactive mode never engages.
    """

    def __init__(self, source=None):
        self.source = source if source is not None else WavSpectrumSource()
        self.initialized = False

        self.magnitudes = np.zeros(NUM_TOTAL_BINS)
        self.prev_magnitudes = np.zeros(NUM_TOTAL_BINS)
        self.weighted_magnitudes = np.zeros(NUM_TOTAL_BINS)

        self.fast_alpha = DEFAULT_FAST_ALPHA
        self.slow_alpha = DEFAULT_SLOW_ALPHA
        self.weights = np.array([0.4, 0.4, 0.1, 0.1, 0.0]
                                + [0.2] * 5
                                + [0.5, 0.5, 0.0, 0.0, 0.0])

        self.is_playing = False
        self.paused_at = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self):
        try:
            self.source.open()
        except (OSError, RuntimeError, ValueError) as exc:
            logger.warning("Audio analyzer unavailable: %s", exc)
            self.initialized = False
            return False
        self.initialized = True
        return True

    def play(self):
        if not self.initialized:
            logger.error("Cannot play: audio not loaded")
            return False
        self._halt()
        self.source.seek(self.paused_at)
        self.paused_at = 0.0
        self.is_playing = True
        logger.info("Audio playback started at %.1fs", self.source.position)
        return True

    def pause(self):
        if not self.is_playing:
            return False
        self.paused_at = self.source.position
        self._halt()
        logger.info("Audio playback paused at %.1fs", self.paused_at)
        return True

    def stop(self):
        self.paused_at = 0.0
        if self._halt():
            logger.info("Audio playback stopped")
            return True
        return False

    def _halt(self):
        if not self.is_playing:
            return False
        self.is_playing = False
        self.reset_magnitudes()
        return True

    def cleanup(self):
        self.stop()
        self.source.close()
        self.initialized = False

    def reset_magnitudes(self):
        self.magnitudes[:] = 0.0
        self.prev_magnitudes[:] = 0.0
        self.weighted_magnitudes[:] = 0.0
        reset = getattr(self.source, "reset", None)
        if reset:
            reset()

    def apply_configuration(self, fast_alpha=None, slow_alpha=None, weights=None):
        """Update smoothing coefficients and band weights.

        ``weights`` is a sim.config.BandWeights (or anything with
        ``low``/``mid``/``high`` lists of five floats).
        """
        if fast_alpha is not None:
            self.fast_alpha = float(fast_alpha)
        if slow_alpha is not None:
            self.slow_alpha = float(slow_alpha)
        if weights is not None:
            self.weights = np.array(list(weights.low) + list(weights.mid)
                                    + list(weights.high), dtype=float)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def update(self, delta_time=0.0):
        """Advance playback and return the 15 weighted magnitudes, or None."""
        if not self.initialized or not self.is_playing:
            return None
        if not self.source.advance(delta_time):
            self._halt()
            return None
        self.process_frequency_data(self.source.byte_frequency_data())
        return self.weighted_magnitudes.tolist()

    def process_frequency_data(self, frequency_data):
        data = np.asarray(frequency_data, dtype=float)
        for i, bin_index in enumerate(BIN_INDICES):
            if bin_index < len(data):
                self.magnitudes[i] = data[bin_index] / 255.0

        rising = self.magnitudes > self.prev_magnitudes
        alpha = np.where(rising, self.fast_alpha, self.slow_alpha)
        self.magnitudes = alpha * self.magnitudes + (1.0 - alpha) * self.prev_magnitudes
        self.prev_magnitudes = self.magnitudes.copy()

        self.magnitudes = np.clip(self.magnitudes, 0.0, 1.0)
        self.weighted_magnitudes = self.magnitudes * self.weights
        return self.weighted_magnitudes
