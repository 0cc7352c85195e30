"""One visitor's simulated room: two neon installations, the flip-disc
display and the disco knob, restored from that visitor's saved document.

Inbound messages use the same topics the physical devices subscribe to, so
a message from the HTTP publish endpoint and one relayed from the broker
are handled identically by ``dispatch``.
"""

import json
import logging
import os
import random
import uuid

from services.audio_analyzer import AudioAnalyzer
from sim.config import DiscoKnobConfig, FlipDiscConfig
from sim.disco_knob_manager import DiscoKnobManager
from sim.flipdisc_manager import DEFAULT_COLS, DEFAULT_ROWS, FlipDiscManager
from sim.neon_manager import NeonManager

logger = logging.getLogger(__name__)

ASSETS_DIR = os.path.join(os.path.dirname(__file__), "..", "assets")

# device key -> (asset directory, controller count)
NEON_DEVICES = {
    "wallflower": ("WallFlower", 3),
    "stool": ("Stool", 1),
}
FLIPDISC_DIR = "FlipDisc"
DISCOKNOB_DIR = "DiscoKnob"
AUDIO_ACTIONS = ("play", "pause", "stop")

# -- Hover proximity ---------------------------------------------------------
HOVER_DISTANCE = 0.1
LEAVE_DISTANCE = 0.5


def new_client_id():
    return f"web_{uuid.uuid4().hex[:8]}"


def load_schema(directory, assets_dir=ASSETS_DIR):
    """Read ``<assets>/<directory>/model_config.json``; {} when missing.

    Neon schemas are a bare list of controller configs; the others are
    objects keyed by part.
    """
    path = os.path.join(assets_dir, directory, "model_config.json")
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning("No model config at %s", path)
        return {}
    except ValueError as exc:
        logger.error("Invalid model config %s: %s", path, exc)
        return {}


def _field(payload, key, default=None):
    return payload.get(key, default) if isinstance(payload, dict) else default


def _index(text):
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


class Room:
    """All device simulations for one session.

    Args:
        session_id: owner of the room.
        document: saved portfolio document (``wallflower``, ``stool``,
            ``flipDisc``, ``discoKnob``, ``lightsOn``); may be empty.
        bridge: MessageBridge for outbound commands, or None.
        loader: model loader; models are skipped when None.
        analyzer_factory: ``() -> AudioAnalyzer`` per neon installation.
    """

    def __init__(self, session_id, document=None, bridge=None, loader=None,
                 assets_dir=ASSETS_DIR, rng=None, analyzer_factory=AudioAnalyzer,
                 clock=None):
        document = document if isinstance(document, dict) else {}
        self.session_id = session_id
        self.client_id = document.get("clientId") or new_client_id()
        self.bridge = bridge
        self.rng = rng or random.Random()
        self.lights_on = bool(document.get("lightsOn", True))
        self._muted = False
        self.errors = []

        self.neon = {}
        for device, (directory, count) in NEON_DEVICES.items():
            schema = load_schema(directory, assets_dir)
            controllers = schema if isinstance(schema, list) else schema.get("controllers")
            self.neon[device] = NeonManager(
                controllers or [],
                initial_state=document.get(device),
                num_controllers=count,
                device=device,
                publish=self.publish,
                analyzer=analyzer_factory(),
                rng=self.rng,
            )

        flip_schema = load_schema(FLIPDISC_DIR, assets_dir)
        self.flipdisc = FlipDiscManager(
            rows=int(flip_schema.get("rows", DEFAULT_ROWS)),
            cols=int(flip_schema.get("cols", DEFAULT_COLS)),
            model_schema=flip_schema,
            rng=self.rng,
            clock=clock,
        )
        self.discoknob = DiscoKnobManager(
            model_schema=load_schema(DISCOKNOB_DIR, assets_dir),
            config=DiscoKnobConfig.from_dict(document.get("discoKnob")),
            on_spotlights=lambda spotlights: self.publish("smartknob/spotlights", spotlights),
        )

        for device, manager in self.neon.items():
            manager.initialize(loader, lambda ok, d=device: self._report(d, ok))
        if loader is not None:
            self.flipdisc.initialize(loader, lambda ok: self._report("flipdisc", ok))
            self.discoknob.initialize(loader, lambda ok: self._report("discoknob", ok))
        self._restore_flipdisc(document.get("flipDisc"))

    def _report(self, device, success):
        if not success:
            self.errors.append(device)
            logger.warning("Room %s: %s did not fully initialise", self.session_id, device)

    def _restore_flipdisc(self, data):
        saved = FlipDiscConfig.from_dict(data)
        if saved.pattern is not None:
            self.flipdisc.set_pattern(saved.pattern)
        elif saved.drawing is not None and saved.drawing.grid:
            self.flipdisc.set_drawing_grid({"grid": saved.drawing.grid,
                                            "invert": saved.drawing.invert})

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def publish(self, topic, payload):
        if self.bridge is None or self._muted:
            return False
        return self.bridge.publish(topic, payload, client_id=self.client_id)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def dispatch(self, topic, payload, relayed=False):
        """Apply one inbound message. Returns False for unknown topics.

        Relayed messages came from the shared broker and are applied without
        publishing anything back.
        """
        self._muted = relayed
        try:
            return self._dispatch(topic, payload)
        finally:
            self._muted = False

    def _dispatch(self, topic, payload):
        parts = [p for p in (topic or "").split("/") if p]
        if not parts:
            logger.warning("Ignoring message with empty topic")
            return False

        head = parts[0]
        if head in self.neon:
            return self._dispatch_neon(self.neon[head], parts[1:], payload)
        if head == "flip" and len(parts) == 2:
            return self._dispatch_flip(parts[1], payload)
        if topic == "smartknob/disco":
            self.discoknob.set_disco_data(payload)
            self.publish("smartknob/disco", self.discoknob.to_dict())
            return True
        if topic == "room/lights":
            self.lights_on = bool(_field(payload, "on", not self.lights_on))
            return True

        logger.warning("Room %s: unknown topic %s", self.session_id, topic)
        return False

    def _dispatch_neon(self, manager, parts, payload):
        action = parts[0] if parts else ""
        index = _index(parts[1]) if len(parts) > 1 else None

        if action == "manager":
            return False  # status echo from another client
        if action == "manual":
            return manager.handle_manual_request(payload, index or 0)
        if action == "profile":
            manager.handle_profile_request(payload)
            return True
        if action == "audio_config":
            manager.handle_audio_config_request(payload)
            return True
        if action == "passive":
            manager.set_passive_mode_enabled(bool(_field(payload, "enabled", True)))
            return True
        if action == "distance" and index is not None:
            return manager.set_distance(index, _field(payload, "distance", 0.0))
        if action == "audio" and len(parts) > 1 and parts[1] in AUDIO_ACTIONS:
            return self.audio(manager.device, parts[1])

        logger.warning("%s: unknown action %r", manager.device, action)
        return False

    def _dispatch_flip(self, action, payload):
        if action == "draw":
            if not self.flipdisc.set_drawing_grid(payload):
                return False
            self.publish("flip/draw", payload)
            return True
        if action == "pattern":
            self.flipdisc.set_pattern(payload)
            if self.flipdisc.pattern_data is not None:
                self.publish("flip/pattern", self.flipdisc.pattern_data.to_wire())
            return True
        if action == "camera":
            self.flipdisc.set_camera_data(payload)
            return True
        if action == "clear":
            self.flipdisc.clear()
            return True
        if action == "sound":
            self.flipdisc.toggle_sound(_field(payload, "enabled"))
            return True
        logger.warning("flip: unknown action %r", action)
        return False

    def audio(self, device, action):
        """Play, pause or stop the audio track of one neon installation."""
        manager = self.neon.get(device)
        if manager is None:
            raise KeyError(device)
        handlers = {
            "play": manager.play_audio,
            "pause": manager.pause_audio,
            "stop": manager.stop_audio,
        }
        if action not in AUDIO_ACTIONS:
            raise ValueError(f"unknown audio action: {action}")
        return handlers[action]()

    def hover(self, device, index, hovering):
        """Simulate a visitor moving toward or away from a controller."""
        manager = self.neon.get(device)
        if manager is None:
            raise KeyError(device)
        return manager.set_distance(index, HOVER_DISTANCE if hovering else LEAVE_DISTANCE)

    # ------------------------------------------------------------------
    # Tick / read side
    # ------------------------------------------------------------------

    def update(self, delta_time):
        for manager in self.neon.values():
            manager.update(delta_time)
        self.flipdisc.update(delta_time)
        self.discoknob.update(delta_time)

    def cleanup(self):
        for manager in self.neon.values():
            manager.audio_analyzer.cleanup()
            manager.cleanup_passive_mode()

    def snapshot(self):
        state = {
            "sessionId": self.session_id,
            "clientId": self.client_id,
            "lightsOn": self.lights_on,
            "flipDisc": self.flipdisc.to_dict(),
            "discoKnob": self.discoknob.to_dict(),
            "errors": list(self.errors),
        }
        for device, manager in self.neon.items():
            state[device] = manager.to_dict()
        return state
