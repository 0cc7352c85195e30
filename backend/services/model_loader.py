"""glTF / GLB scene loader for the device simulations.

Only the node hierarchy and materials are read; geometry buffers are
ignored because the simulation never renders. Loaded scenes are cached by
path so controllers sharing a model file parse it once.

Callers use the same callback style as the browser loader:

    loader.load(path, on_load, on_error)
"""

import json
import logging
import os
import struct
import threading

from sim.scene import Material, SceneNode

logger = logging.getLogger(__name__)

ASSETS_DIR = os.path.join(os.path.dirname(__file__), "..", "assets")

GLB_MAGIC = b"glTF"
GLB_HEADER = struct.Struct("<4sII")  # magic, version, total length
GLB_CHUNK_HEADER = struct.Struct("<I4s")  # chunk length, chunk type
GLB_JSON_CHUNK = b"JSON"


class ModelLoadError(Exception):
    pass


class ModelCache:
    """path -> parsed scene root. Thread-safe."""

    def __init__(self):
        self._models = {}
        self._lock = threading.Lock()

    def has(self, path):
        with self._lock:
            return path in self._models

    def get(self, path):
        with self._lock:
            return self._models.get(path)

    def set(self, path, model):
        with self._lock:
            self._models[path] = model

    def __len__(self):
        with self._lock:
            return len(self._models)


def read_gltf_json(raw):
    """Return the JSON document of a .gltf or .glb payload."""
    if raw[:4] == GLB_MAGIC:
        if len(raw) < GLB_HEADER.size + GLB_CHUNK_HEADER.size:
            raise ModelLoadError("truncated GLB header")
        _, version, _ = GLB_HEADER.unpack_from(raw, 0)
        if version != 2:
            raise ModelLoadError(f"unsupported GLB version {version}")
        length, chunk_type = GLB_CHUNK_HEADER.unpack_from(raw, GLB_HEADER.size)
        if chunk_type != GLB_JSON_CHUNK:
            raise ModelLoadError("first GLB chunk is not JSON")
        start = GLB_HEADER.size + GLB_CHUNK_HEADER.size
        raw = raw[start:start + length]
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ModelLoadError(f"invalid glTF JSON: {exc}") from exc


def _material(doc, index):
    materials = doc.get("materials") or []
    if index is None or not 0 <= index < len(materials):
        return Material()
    raw = materials[index]
    pbr = raw.get("pbrMetallicRoughness") or {}
    color = pbr.get("baseColorFactor") or [1.0, 1.0, 1.0, 1.0]
    material = Material(raw.get("name", ""), color[:3])
    material.metalness = float(pbr.get("metallicFactor", 1.0))
    material.roughness = float(pbr.get("roughnessFactor", 1.0))
    if raw.get("emissiveFactor"):
        material.emissive = tuple(raw["emissiveFactor"][:3])
    return material


def build_scene(doc):
    """Build a SceneNode tree from a parsed glTF document."""
    nodes = doc.get("nodes") or []
    meshes = doc.get("meshes") or []
    scenes = doc.get("scenes") or [{"nodes": list(range(len(nodes)))}]
    scene = scenes[doc.get("scene", 0)] if doc.get("scene", 0) < len(scenes) else scenes[0]

    def build(index, seen):
        if index in seen or not 0 <= index < len(nodes):
            raise ModelLoadError(f"invalid node reference {index}")
        raw = nodes[index]
        node = SceneNode(raw.get("name", f"node{index}"))
        node.position = list(raw.get("translation", [0.0, 0.0, 0.0]))
        node.scale = list(raw.get("scale", [1.0, 1.0, 1.0]))

        mesh_index = raw.get("mesh")
        if mesh_index is not None and 0 <= mesh_index < len(meshes):
            # One child per primitive, each carrying its own material
            for prim in meshes[mesh_index].get("primitives") or []:
                node.children.append(SceneNode(
                    meshes[mesh_index].get("name", ""),
                    material=_material(doc, prim.get("material")),
                ))
        for child in raw.get("children") or []:
            node.children.append(build(child, seen | {index}))
        return node

    root = SceneNode(scene.get("name", "scene"))
    for index in scene.get("nodes") or []:
        root.children.append(build(index, frozenset()))
    return root


class GltfLoader:
    def __init__(self, base_dir=ASSETS_DIR, cache=None):
        self.base_dir = base_dir
        self.cache = cache if cache is not None else ModelCache()

    def resolve(self, path):
        base = os.path.normpath(self.base_dir)
        full = os.path.normpath(os.path.join(base, path.lstrip("/")))
        if not full.startswith(base + os.sep):
            raise ModelLoadError(f"path escapes asset directory: {path}")
        return full

    def load(self, path, on_load, on_error=None):
        """Load ``path`` and hand a private copy of the scene to ``on_load``."""
        cached = self.cache.get(path)
        if cached is not None:
            on_load(cached.clone())
            return

        try:
            with open(self.resolve(path), "rb") as f:
                scene = build_scene(read_gltf_json(f.read()))
        except (OSError, ModelLoadError) as exc:
            logger.warning("Model load failed for %s: %s", path, exc)
            if on_error:
                on_error(exc)
            return

        self.cache.set(path, scene)
        logger.info("Loaded model %s", path)
        on_load(scene.clone())
