import io
from PIL import Image, ImageDraw

# Preview geometry (pixels per disc)
DISC_SIZE = 12
GAP = 2
PADDING = 8

OFF = 0
ON = 1

# RGB values for web preview: black frame, yellow discs on their bright face
COLOR_MAP = {
    OFF: (28, 28, 28),
    ON: (250, 210, 40),
}
FRAME_COLOR = (0, 0, 0)
INVERTED_COLOR_MAP = {
    OFF: COLOR_MAP[ON],
    ON: COLOR_MAP[OFF],
}


def _image_size(rows, cols):
    width = PADDING * 2 + cols * DISC_SIZE + (cols - 1) * GAP
    height = PADDING * 2 + rows * DISC_SIZE + (rows - 1) * GAP
    return width, height


def render_grid(grid, inverted=False):
    """Draw a rows x cols grid of truthy/falsy cells as round discs."""
    rows = len(grid)
    cols = len(grid[0]) if rows else 0
    cmap = INVERTED_COLOR_MAP if inverted else COLOR_MAP

    img = Image.new("RGB", _image_size(max(rows, 1), max(cols, 1)), FRAME_COLOR)
    draw = ImageDraw.Draw(img)
    for r, row in enumerate(grid):
        y = PADDING + r * (DISC_SIZE + GAP)
        for c, cell in enumerate(row):
            x = PADDING + c * (DISC_SIZE + GAP)
            color = cmap[ON if cell else OFF]
            draw.ellipse([x, y, x + DISC_SIZE - 1, y + DISC_SIZE - 1], fill=color)
    return img


def image_to_png(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def get_display_png(grid, inverted=False):
    """Return the flip-disc grid as PNG bytes."""
    return image_to_png(render_grid(grid, inverted))
