"""Generative patterns and the camera face glyph for the flip-disc display.

Every generator returns a flat row-major list of booleans (True = disc shows
its bright side) sized rows * cols. Generators with animation state keep it
on the pattern object; ``reset()`` returns them to their starting state.
"""

import math
import os
from datetime import datetime

from PIL import Image, ImageDraw, ImageFont

# -- Clock digit raster ------------------------------------------------------
DIGIT_SIZE = 13
DIGIT_FONT_SIZE = 13
DIGIT_OFFSETS = ((2, 1), (13, 1), (2, 13), (13, 13))  # HH over MM
_BOLD_FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/msttcorefonts/Verdana_Bold.ttf",
    "/Library/Fonts/Verdana Bold.ttf",
    "C:/Windows/Fonts/verdanab.ttf",
]

# -- Spiral ------------------------------------------------------------------
SPIRAL_STEP = 0.2
SPIRAL_MAX_LENGTH = 50
SPIRAL_OFFSETS = ((0, 0), (0, 1), (1, 1), (1, 0))

# -- Wave --------------------------------------------------------------------
WAVE_STEP = 0.2

# -- Blob --------------------------------------------------------------------
BLOB_FOOD_COUNT = 30
BLOB_BASE_SPEED = 0.15
BLOB_MAX_RADIUS = 15
BLOB_GROWTH_STEP = 0.1
BLOB_RADIUS_STEP = 0.2
BLOB_FOOD_ATTEMPTS = 50

# -- Cascade (seconds) -------------------------------------------------------
CASCADE_START_INTERVAL = 1.0
CASCADE_MIN_INTERVAL = 0.05

# -- Face glyph --------------------------------------------------------------
LEFT_EYEBROW = (336, 296, 334, 293, 300)
RIGHT_EYEBROW = (70, 63, 105, 66, 107)
EYEBROW_LIFT = 0.02
LEFT_EYE = (386, 374)   # top, bottom
RIGHT_EYE = (159, 145)
MOUTH_CENTER, MOUTH_LEFT, MOUTH_RIGHT = 0, 61, 291
MIN_OPENNESS = 0.01
MAX_OPENNESS = 0.08
FACE_MARGIN = 4
SMILE_GESTURE = "Open_Palm"
SMILE_MIN_SCORE = 0.3


def _load_font(paths, size):
    for path in paths:
        if os.path.exists(path):
            return ImageFont.truetype(path, size)
    return ImageFont.load_default()


class Canvas:
    """Flat boolean grid with bounds-checked pixel writes."""

    def __init__(self, rows, cols):
        self.rows = rows
        self.cols = cols
        self.cells = [False] * (rows * cols)

    def set(self, x, y, value=True):
        if 0 <= x < self.cols and 0 <= y < self.rows:
            self.cells[y * self.cols + x] = value

    def line(self, x1, y1, x2, y2):
        """Bresenham line between two grid points (inclusive)."""
        dx = abs(x2 - x1)
        dy = abs(y2 - y1)
        sx = 1 if x1 < x2 else -1
        sy = 1 if y1 < y2 else -1
        err = dx - dy
        while True:
            self.set(x1, y1)
            if x1 == x2 and y1 == y2:
                break
            e2 = 2 * err
            if e2 > -dy:
                err -= dy
                x1 += sx
            if e2 < dx:
                err += dx
                y1 += sy


class Pattern:
    id = 0
    name = ""

    def __init__(self, rows, cols, rng):
        self.rows = rows
        self.cols = cols
        self.rng = rng
        self.reset()

    def reset(self):
        pass

    def step(self, speed, now):
        raise NotImplementedError


class ClockPattern(Pattern):
    id = 1
    name = "Clock"

    def __init__(self, rows, cols, rng, clock=datetime.now):
        self.clock = clock
        self.font = _load_font(_BOLD_FONT_PATHS, DIGIT_FONT_SIZE)
        super().__init__(rows, cols, rng)

    def render_digit(self, digit):
        """Rasterize one digit into a DIGIT_SIZE square, True where inked."""
        img = Image.new("L", (DIGIT_SIZE, DIGIT_SIZE), 255)
        draw = ImageDraw.Draw(img)
        text = str(digit)
        left, top, right, bottom = self.font.getbbox(text)
        x = (DIGIT_SIZE - (right - left)) / 2 - left
        y = (DIGIT_SIZE - (bottom - top)) / 2 - top
        draw.text((x, y), text, fill=0, font=self.font)
        pixels = img.load()
        return [[pixels[px, py] < 128 for px in range(DIGIT_SIZE)]
                for py in range(DIGIT_SIZE)]

    def step(self, speed, now):
        canvas = Canvas(self.rows, self.cols)
        current = self.clock()
        digits = (current.hour // 10, current.hour % 10,
                  current.minute // 10, current.minute % 10)
        for digit, (ox, oy) in zip(digits, DIGIT_OFFSETS):
            for y, row in enumerate(self.render_digit(digit)):
                for x, inked in enumerate(row):
                    if inked:
                        canvas.set(ox + x, oy + y)
        return canvas.cells


class SpiralPattern(Pattern):
    id = 2
    name = "Spiral"

    def reset(self):
        self.angle = 0.0
        self.max_length = SPIRAL_MAX_LENGTH

    def step(self, speed, now):
        canvas = Canvas(self.rows, self.cols)
        center_row = self.rows // 2
        center_col = self.cols // 2
        self.angle += SPIRAL_STEP

        t = 0.0
        while t < 50:
            r = t * 2
            angle = t * 2 + self.angle
            x = round(center_col + r * math.cos(angle))
            y = round(center_row + r * math.sin(angle))
            for dx, dy in SPIRAL_OFFSETS:
                canvas.set(x + dx, y + dy)
            if r > self.max_length:
                break
            t += 0.1
        return canvas.cells


class WavePattern(Pattern):
    id = 3
    name = "Wave"

    def reset(self):
        self.phase = 0.0
        self.amplitude = self.rows / 6

    def step(self, speed, now):
        canvas = Canvas(self.rows, self.cols)
        self.phase += WAVE_STEP
        center_row = self.rows // 2
        for col in range(self.cols):
            wave1 = math.sin(self.phase + col * 0.3) * self.amplitude
            wave2 = math.sin(self.phase * 0.7 + col * 0.4) * (self.amplitude * 0.5)
            wave_row = round(center_row + wave1 + wave2)
            for thickness in (-1, 0, 1):
                canvas.set(col, wave_row + thickness)
        return canvas.cells


class BlobPattern(Pattern):
    """An organism that drifts toward food dots, eats them and grows."""
    id = 4
    name = "Blob"

    def __init__(self, rows, cols, rng):
        self.x = float(cols // 2)
        self.y = float(rows // 2)
        self.radius = 1.0
        self.max_radius = BLOB_MAX_RADIUS
        self.food = set()
        self.consumed = set()
        self.growth_accumulator = 0.0
        super().__init__(rows, cols, rng)
        while len(self.food) < BLOB_FOOD_COUNT:
            if not self.add_food():
                break

    def add_food(self):
        for _ in range(BLOB_FOOD_ATTEMPTS):
            x = self.rng.randrange(self.cols)
            y = self.rng.randrange(self.rows)
            if (math.hypot(x - self.x, y - self.y) > self.radius * 2
                    and (x, y) not in self.food and (x, y) not in self.consumed):
                self.food.add((x, y))
                return True
        return False

    def _nearest_food(self):
        nearest, best = None, math.inf
        for pos in self.food:
            if pos in self.consumed:
                continue
            distance = math.hypot(pos[0] - self.x, pos[1] - self.y)
            if distance < best:
                nearest, best = pos, distance
        return nearest, best

    def step(self, speed, now):
        nearest, distance = self._nearest_food()
        if nearest is not None:
            move = BLOB_BASE_SPEED * (1 - (self.radius / self.max_radius) * 0.5)
            angle = math.atan2(nearest[1] - self.y, nearest[0] - self.x)
            self.x += math.cos(angle) * move
            self.y += math.sin(angle) * move

            if distance < self.radius and nearest not in self.consumed:
                self.consumed.add(nearest)
                self.growth_accumulator += BLOB_GROWTH_STEP
                if self.growth_accumulator >= 1:
                    self.radius = min(self.max_radius, self.radius + BLOB_RADIUS_STEP)
                    self.growth_accumulator = 0.0
                self.add_food()

        canvas = Canvas(self.rows, self.cols)
        for y in range(self.rows):
            for x in range(self.cols):
                if (x, y) in self.food and (x, y) not in self.consumed:
                    canvas.set(x, y)
                    continue
                d = math.hypot(x - self.x, y - self.y)
                if d < self.radius:
                    # Denser toward the middle so it reads as a sphere
                    sphere = math.cos((d / self.radius) * math.pi * 0.5)
                    if self.rng.random() < 0.7 + sphere * 0.3:
                        canvas.set(x, y)
        return canvas.cells


class CascadePattern(Pattern):
    """Randomly flips discs on, accelerating, then flips them all back."""
    id = 5
    name = "Cascade"

    def reset(self):
        self.flipped = []
        self.lit = set()
        self.total_flipped = 0
        self.max_flips = min(self.rows, self.cols) * 50
        self.current_interval = CASCADE_START_INTERVAL
        self.min_interval = CASCADE_MIN_INTERVAL
        self.last_flip_time = 0.0
        self.direction = True  # True = lighting up

    def _available(self):
        flipped = set(self.flipped)
        if self.direction:
            return [i for i in range(self.rows * self.cols) if i not in self.lit]
        return [i for i in range(self.rows * self.cols)
                if i in self.lit and i not in flipped]

    def step(self, speed, now):
        if now - self.last_flip_time > self.current_interval:
            per_update = max(1, self.total_flipped // 20)
            for _ in range(per_update):
                available = self._available()
                if not available:
                    self.direction = not self.direction
                    self.flipped = []
                    self.total_flipped = 0
                    self.current_interval = self.min_interval
                    break
                index = available[self.rng.randrange(len(available))]
                self.flipped.append(index)
                if self.direction:
                    self.lit.add(index)
                else:
                    self.lit.discard(index)
                self.total_flipped += 1

            self.last_flip_time = now
            progress = self.total_flipped / self.max_flips
            acceleration = min(0.9, 0.99 - progress * 0.8)
            self.current_interval = max(self.min_interval / (speed or 1.0),
                                        self.current_interval * acceleration)

        cells = [False] * (self.rows * self.cols)
        for index in self.lit:
            cells[index] = True
        return cells


class BouncePattern(Pattern):
    id = 6
    name = "Bounce"

    def __init__(self, rows, cols, rng):
        self.x = cols / 2
        self.y = rows / 2
        self.dx = 0.5
        self.dy = 0.3
        self.size = 2
        super().__init__(rows, cols, rng)

    def _normalize(self):
        speed = math.hypot(self.dx, self.dy)
        if speed:
            self.dx /= speed
            self.dy /= speed

    def step(self, speed, now):
        self.x += self.dx
        self.y += self.dy

        if self.x <= self.size or self.x >= self.cols - self.size:
            self.dx *= -1
            self.dy += (self.rng.random() - 0.5) * 0.1
            self._normalize()
        if self.y <= self.size or self.y >= self.rows - self.size:
            self.dy *= -1
            self.dx += (self.rng.random() - 0.5) * 0.1
            self._normalize()

        canvas = Canvas(self.rows, self.cols)
        for dy in (-1, 0):
            for dx in (-1, 0):
                canvas.set(math.floor(self.x) + dx, math.floor(self.y) + dy)
        return canvas.cells


PATTERN_TYPES = {cls.id: cls for cls in (
    ClockPattern, SpiralPattern, WavePattern, BlobPattern, CascadePattern, BouncePattern)}


# ---------------------------------------------------------------------------
# Camera face glyph
# ---------------------------------------------------------------------------

def _point(landmarks, index):
    if index >= len(landmarks):
        return None
    point = landmarks[index]
    if isinstance(point, dict) and "x" in point and "y" in point:
        return float(point["x"]), float(point["y"])
    return None


def eye_size(openness):
    """Map eyelid openness onto half-widths 0, 1 or 2 (1x1, 3x3, 5x5)."""
    normalized = (openness - MIN_OPENNESS) / (MAX_OPENNESS - MIN_OPENNESS)
    if 0.35 < normalized < 0.8:
        return 1
    return max(0, min(2, round(normalized * 2)))


def generate_face_pattern(rows, cols, landmarks, gestures=None):
    """Draw eyebrows, eyes and a mouth from face landmarks.

    ``landmarks`` is a list of ``{"x", "y"}`` points in normalized image
    coordinates (MediaPipe face mesh indexing). The mouth curves into a
    smile while an open palm is recognized with enough confidence.
    """
    canvas = Canvas(rows, cols)
    points = [p for p in (_point(landmarks or [], i) for i in range(len(landmarks or [])))
              if p is not None]
    if not points:
        return canvas.cells

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    x_min, y_min = min(xs), min(ys)
    face_width = max(xs) - x_min
    face_height = max(ys) - y_min
    if face_width <= 0 or face_height <= 0:
        return canvas.cells

    usable_w = cols - 2 * FACE_MARGIN
    usable_h = rows - 2 * FACE_MARGIN

    def to_grid(x, y):
        gx = math.floor((x - x_min) / face_width * usable_w) + FACE_MARGIN
        gy = math.floor((y - y_min) / face_height * usable_h) + FACE_MARGIN
        return min(max(0, gx), cols - 1), min(max(0, gy), rows - 1)

    for brow in (LEFT_EYEBROW, RIGHT_EYEBROW):
        previous = None
        for idx in brow:
            point = _point(landmarks, idx)
            if point is None:
                continue
            current = to_grid(point[0], point[1] - EYEBROW_LIFT)
            if previous:
                canvas.line(previous[0], previous[1], current[0], current[1])
            previous = current

    eyes = [(_point(landmarks, top), _point(landmarks, bottom))
            for top, bottom in (LEFT_EYE, RIGHT_EYE)]
    if all(top and bottom for top, bottom in eyes):
        for top, bottom in eyes:
            size = eye_size((bottom[1] - top[1]) / face_height)
            cx, cy = to_grid(top[0], (top[1] + bottom[1]) / 2)
            for dy in range(-size, size + 1):
                for dx in range(-size, size + 1):
                    canvas.set(cx + dx, cy + dy)

    center = _point(landmarks, MOUTH_CENTER)
    left = _point(landmarks, MOUTH_LEFT)
    right = _point(landmarks, MOUTH_RIGHT)
    if center and left and right:
        cx, cy = to_grid(*center)
        left_x = to_grid(*left)[0]
        right_x = to_grid(*right)[0]
        half_width = (right_x - left_x) // 2

        smiling = any(
            isinstance(g, dict) and g.get("categoryName") == SMILE_GESTURE
            and (g.get("score") or 0) > SMILE_MIN_SCORE
            for g in gestures or []
        )
        if smiling and half_width > 0:
            for i in range(-half_width, half_width + 1):
                curve = math.floor((i * i) / (half_width * 0.5))
                canvas.set(cx + i, cy + curve)
        else:
            canvas.line(cx - half_width, cy, cx + half_width, cy)

    return canvas.cells
