"""Minimal scene graph used by the device simulations.

Only what the controllers need is modelled: named nodes with a transform,
optional material, and children. The browser renderer reads the resulting
material and transform values from the room state endpoint.
"""

import copy


def parse_color(value, default=(1.0, 1.0, 1.0)):
    """Parse ``#rrggbb`` (or ``rrggbb``) into an (r, g, b) float tuple."""
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        return tuple(float(c) for c in value[:3])
    if not isinstance(value, str):
        return default
    text = value.strip().lstrip("#")
    if len(text) != 6:
        return default
    try:
        return tuple(int(text[i:i + 2], 16) / 255.0 for i in (0, 2, 4))
    except ValueError:
        return default


def to_hex(color):
    return "#" + "".join(f"{round(max(0.0, min(c, 1.0)) * 255):02x}" for c in color)


class Material:
    def __init__(self, name="", color=(1.0, 1.0, 1.0)):
        self.name = name
        self.color = tuple(color)
        self.emissive = (0.0, 0.0, 0.0)
        self.emissive_intensity = 1.0
        self.original_color = None
        self.roughness = 0.8
        self.metalness = 0.0
        self.flat_shading = False

    def to_dict(self):
        return {
            "name": self.name,
            "color": to_hex(self.color),
            "emissive": to_hex(self.emissive),
            "emissiveIntensity": round(self.emissive_intensity, 4),
        }


class SceneNode:
    def __init__(self, name="", material=None, children=None):
        self.name = name
        self.material = material
        self.children = list(children or [])
        self.position = [0.0, 0.0, 0.0]
        self.rotation = [0.0, 0.0, 0.0]  # radians
        self.scale = [1.0, 1.0, 1.0]

    @property
    def is_mesh(self):
        return self.material is not None

    def traverse(self):
        yield self
        for child in self.children:
            yield from child.traverse()

    def clone(self):
        # Materials are copied too so each supply can glow independently
        return copy.deepcopy(self)

    def materials(self):
        return {n.material.name: n.material for n in self.traverse()
                if n.is_mesh and n.material.name}
