import logging
from flask import Blueprint, Response, jsonify, request
from db import get_config
from drivers.flipdisc_preview import get_display_png
from routes.portfolio import get_session_id
from services.bridge import MessageBridge
from services.model_loader import GltfLoader
from services.room import NEON_DEVICES
from services.simulation import SimulationEngine

logger = logging.getLogger(__name__)

devices_bp = Blueprint("devices", __name__)
bridge = MessageBridge()
engine = SimulationEngine(document_loader=get_config, bridge=bridge, loader=GltfLoader())


def _neon_device(device):
    if device not in NEON_DEVICES:
        return None, (jsonify({"error": f"Unknown device: {device}"}), 404)
    return device, None


@devices_bp.post("/api/publish")
def publish():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get("topic"):
        return jsonify({"error": "topic is required"}), 400

    topic = data["topic"]
    handled = engine.submit(get_session_id(), topic, data.get("message"))
    if not handled:
        return jsonify({"error": f"Unhandled topic: {topic}"}), 400
    return jsonify({"ok": True})


@devices_bp.post("/api/bridge/publish")
def bridge_publish():
    """Send a message straight to the physical installation."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get("topic"):
        return jsonify({"error": "topic is required"}), 400

    room = engine.room(get_session_id())
    if not bridge.publish(data["topic"], data.get("message"), client_id=room.client_id):
        return jsonify({"error": "Bridge not connected"}), 502
    return jsonify({"ok": True})


@devices_bp.get("/api/room/state")
def room_state():
    return jsonify(engine.room_state(get_session_id()))


@devices_bp.get("/api/flipdisc/display")
def flipdisc_display():
    grid = engine.with_room(get_session_id(), lambda room: room.flipdisc.grid())
    inverted = request.args.get("inverted") in ("1", "true")
    return Response(get_display_png(grid, inverted), mimetype="image/png")


@devices_bp.post("/api/<device>/audio/<action>")
def audio(device, action):
    device, error = _neon_device(device)
    if error:
        return error
    try:
        ok = engine.with_room(get_session_id(), lambda room: room.audio(device, action))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    playing = engine.with_room(get_session_id(),
                               lambda room: room.neon[device].audio_playing)
    return jsonify({"ok": bool(ok), "playing": playing})


@devices_bp.post("/api/<device>/distance/<int:index>")
def distance(device, index):
    device, error = _neon_device(device)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    value = data.get("distance")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return jsonify({"error": "distance must be a number"}), 400

    ok = engine.with_room(get_session_id(),
                          lambda room: room.neon[device].set_distance(index, value))
    if not ok:
        return jsonify({"error": f"No controller {index} on {device}"}), 404
    return jsonify({"ok": True, "distance": value})


@devices_bp.post("/api/<device>/hover/<int:index>")
def hover(device, index):
    device, error = _neon_device(device)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    ok = engine.with_room(get_session_id(),
                          lambda room: room.hover(device, index, bool(data.get("hovering", True))))
    if not ok:
        return jsonify({"error": f"No controller {index} on {device}"}), 404
    return jsonify({"ok": True})
