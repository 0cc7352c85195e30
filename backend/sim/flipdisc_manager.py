"""Simulation of the 28x28 flip-disc display.

The display shows one of four things at a time: a drawing pushed from the
draw panel, a face glyph derived from camera landmarks, one of the
generative patterns, or nothing. Only discs whose state actually changes
are flipped; each flip starts a 200 ms half-turn animation and may trigger
a (rate-limited) click sound on the client.
"""

import logging
import math
import random

from sim.config import DrawingConfig, PatternConfig
from sim.flipdisc_patterns import PATTERN_TYPES, ClockPattern, generate_face_pattern

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 28
DEFAULT_COLS = 28

DISPLAY_MODES = ("drawing", "camera", "pattern", "none")
PATTERN_UPDATE_INTERVAL = 0.2  # seconds at speed 1.0

# -- Flip animation ----------------------------------------------------------
FLIP_DURATION = 0.2  # seconds

# -- Flip sound --------------------------------------------------------------
MAX_SOUNDS = 1
MIN_SOUND_INTERVAL = 0.05  # seconds between click cues


def ease_in_out(progress):
    if progress < 0.5:
        return 2 * progress * progress
    return -1 + (4 - 2 * progress) * progress


class FlipAnimation:
    def __init__(self, start_time, start_rotation, end_rotation, duration=FLIP_DURATION):
        self.start_time = start_time
        self.duration = duration
        self.start_rotation = start_rotation
        self.end_rotation = end_rotation
        self.active = True
        self.rotation = start_rotation

    def advance(self, now):
        progress = min((now - self.start_time) / self.duration, 1.0)
        eased = ease_in_out(progress)
        self.rotation = self.start_rotation + (self.end_rotation - self.start_rotation) * eased
        if progress >= 1.0:
            self.active = False
        return self.rotation


class Disc:
    def __init__(self, row, col, flipped=False):
        self.row = row
        self.col = col
        self.flipped = flipped
        self.animation = None

    @property
    def rotation(self):
        if self.animation is not None and self.animation.active:
            return self.animation.rotation
        return math.pi if self.flipped else 0.0


class FlipSoundCue:
    """Decides when a disc flip should produce a click on the client."""

    def __init__(self, enabled=True, min_interval=MIN_SOUND_INTERVAL, max_sounds=MAX_SOUNDS):
        self.enabled = enabled
        self.min_interval = min_interval
        self.max_sounds = max_sounds
        self.last_time = None
        self.pending = 0

    def trigger(self, now):
        if not self.enabled:
            return False
        if self.last_time is not None and now - self.last_time < self.min_interval:
            return False
        if self.pending >= self.max_sounds:
            return False
        self.last_time = now
        self.pending += 1
        return True

    def drain(self):
        count, self.pending = self.pending, 0
        return count


class FlipDiscManager:
    def __init__(self, rows=DEFAULT_ROWS, cols=DEFAULT_COLS, model_schema=None,
                 rng=None, clock=None, on_flip=None):
        self.rows = rows
        self.cols = cols
        self.model_schema = model_schema or {}
        self.rng = rng or random.Random()
        self.on_flip = on_flip

        self.state = [False] * (rows * cols)
        self.discs = [Disc(r, c) for r in range(rows) for c in range(cols)]
        self.drawing_grid = [[0] * cols for _ in range(rows)]
        self.camera_data = None
        self.display_mode = "drawing"
        self.pattern_data = None

        self.time = 0.0
        self.pattern_time = 0.0
        self.last_pattern_update = 0.0
        self.sound = FlipSoundCue()
        self.models = {}
        self.error = None

        self.patterns = {}
        for pattern_id, cls in PATTERN_TYPES.items():
            if cls is ClockPattern and clock is not None:
                self.patterns[pattern_id] = cls(rows, cols, self.rng, clock=clock)
            else:
                self.patterns[pattern_id] = cls(rows, cols, self.rng)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self, loader, callback=None):
        """Load the frame and disc models named in the schema."""
        frame = (self.model_schema.get("frame") or {}).get("model") or {}
        disc = (self.model_schema.get("disc") or {}).get("model") or {}
        if not frame.get("path") or not disc.get("path"):
            logger.error("Invalid flip-disc model schema")
            self.error = "invalid model schema"
            if callback:
                callback(False)
            return

        for key, cfg in (("frame", frame), ("disc", disc)):
            loader.load(cfg["path"],
                        lambda node, k=key: self.models.__setitem__(k, node),
                        lambda exc, k=key: logger.error("Error loading %s model: %s", k, exc))

        success = "frame" in self.models and "disc" in self.models
        if not success:
            self.error = "model load failed"
        if callback:
            callback(success)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def update(self, delta_time):
        self.time += delta_time
        self.update_animations()

        if self.display_mode == "camera" and self.camera_data:
            faces = self.camera_data.get("faceLandmarks") or []
            if faces:
                pattern = generate_face_pattern(
                    self.rows, self.cols, faces[0], self.camera_data.get("gestures"))
                self.apply_pattern_to_discs(pattern)

        elif self.display_mode == "pattern" and self.pattern_data:
            self.pattern_time += delta_time
            interval = PATTERN_UPDATE_INTERVAL / (self.pattern_data.speed or 1.0)
            if self.pattern_time - self.last_pattern_update >= interval:
                self.update_pattern()
                self.last_pattern_update = self.pattern_time

    def update_animations(self):
        for disc in self.discs:
            if disc.animation is not None and disc.animation.active:
                disc.animation.advance(self.time)

    def update_pattern(self):
        if not self.pattern_data or not self.pattern_data.enable:
            return
        pattern = self.patterns.get(self.pattern_data.id)
        if pattern is None:
            return
        self.apply_pattern_to_discs(pattern.step(self.pattern_data.speed, self.pattern_time))

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_camera_data(self, camera_data):
        self.camera_data = camera_data if isinstance(camera_data, dict) else None
        if self.camera_data:
            self.display_mode = "camera"

    def set_drawing_grid(self, grid_data):
        """Show a drawing. Accepts a bare grid or ``{"grid", "invert"}``."""
        drawing = DrawingConfig.from_dict(grid_data)
        grid = drawing.grid
        if (not grid or len(grid) != self.rows
                or any(not isinstance(row, list) or len(row) != self.cols for row in grid)):
            logger.warning("Ignoring drawing with invalid shape")
            return False

        cells = [[1 if cell == 1 else 0 for cell in row] for row in grid]
        if drawing.invert:
            cells = [[0 if cell == 1 else 1 for cell in row] for row in cells]
        self.drawing_grid = cells
        self.display_mode = "drawing"
        self.pattern_data = None
        self.update_visualization()
        return True

    def set_pattern(self, pattern_data):
        if pattern_data:
            self.pattern_data = (pattern_data if isinstance(pattern_data, PatternConfig)
                                 else PatternConfig.from_dict(pattern_data))
            self.display_mode = "pattern"
            self.pattern_time = 0.0
            self.last_pattern_update = 0.0
            self.reset_pattern_state(self.pattern_data.id)
        self.update_visualization()

    def reset_pattern_state(self, pattern_id):
        pattern = self.patterns.get(pattern_id)
        if pattern is not None:
            pattern.reset()

    def toggle_sound(self, enabled=None):
        self.sound.enabled = (not self.sound.enabled) if enabled is None else bool(enabled)
        return self.sound.enabled

    # ------------------------------------------------------------------
    # Disc state
    # ------------------------------------------------------------------

    def apply_pattern_to_discs(self, pattern):
        flipped = 0
        for i, lit in enumerate(pattern[: self.rows * self.cols]):
            lit = bool(lit)
            if self.state[i] != lit:
                self.state[i] = lit
                self.flip_disc(i // self.cols, i % self.cols)
                flipped += 1
        return flipped

    def update_visualization(self):
        if self.display_mode == "drawing":
            self.apply_drawing_to_discs()
        elif self.display_mode == "pattern":
            if self.pattern_data and self.pattern_data.enable:
                self.update_pattern()
            else:
                self.clear_discs()
        elif self.display_mode == "none":
            self.clear_discs()

    def apply_drawing_to_discs(self):
        for row in range(self.rows):
            for col in range(self.cols):
                index = row * self.cols + col
                lit = self.drawing_grid[row][col] == 1
                if self.discs[index].flipped != lit:
                    self.state[index] = lit
                    self.flip_disc(row, col)

    def clear_discs(self):
        for i in range(self.rows * self.cols):
            if self.state[i]:
                self.flip_disc(i // self.cols, i % self.cols)
            self.state[i] = False

    def flip_disc(self, row, col):
        index = row * self.cols + col
        if not 0 <= index < len(self.discs):
            logger.warning("Cannot flip disc at row %d, col %d", row, col)
            return
        disc = self.discs[index]
        disc.flipped = not disc.flipped
        start, end = (0.0, math.pi) if disc.flipped else (math.pi, 0.0)
        disc.animation = FlipAnimation(self.time, start, end)
        self.sound.trigger(self.time)
        if self.on_flip:
            self.on_flip(row, col, disc.flipped)

    def clear(self):
        self.drawing_grid = [[0] * self.cols for _ in range(self.rows)]
        self.pattern_data = None
        self.display_mode = "none"
        self.clear_discs()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def grid(self):
        return [[self.state[r * self.cols + c] for c in range(self.cols)]
                for r in range(self.rows)]

    @property
    def animating(self):
        return sum(1 for d in self.discs if d.animation is not None and d.animation.active)

    def to_dict(self):
        return {
            "rows": self.rows,
            "cols": self.cols,
            "mode": self.display_mode,
            "pattern": self.pattern_data.to_wire() if self.pattern_data else None,
            "grid": ["".join("1" if lit else "0" for lit in row) for row in self.grid()],
            "rotations": {str(i): round(d.rotation, 4) for i, d in enumerate(self.discs)
                          if d.animation is not None and d.animation.active},
            "animating": self.animating,
            "sounds": self.sound.drain(),
        }
