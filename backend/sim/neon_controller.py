"""Simulation of one neon controller (one physical ESP32 node).

A controller owns a handful of supplies (independently dimmable neon
channels) and optionally a motor that spins the rotating pieces. Four
sources compete for those outputs and exactly one of them is authoritative
on a given tick, in priority order:

    manual > audio > profile > passive

Manual is one-shot: a manual message is applied on the next tick and then
control falls through again. Audio holds for AUDIO_REACTIVITY_TIMEOUT
seconds after the last audio message. Profile and passive both run through
the profile executor; passive is a profile that the manager's idle
choreographer started.

On top of whichever source won, the proximity override blends every output
toward a "greeting" state while someone stands closer than
DISTANCE_OVERRIDE_THRESHOLD, and blends back afterwards.
"""

import logging
import math
from enum import Enum

from sim.config import (FREQ_HIGH, FREQ_LOW, FREQ_MID, FREQ_NONE,
                        ManualState, ProfileRequest, SupplyState)
from sim.profile_executor import OutputValues, Profile, ProfileExecutor
from sim.scene import parse_color

logger = logging.getLogger(__name__)

# -- Output limits -----------------------------------------------------------
NORMALIZED_MIN = 0.0
NORMALIZED_MAX = 1.0
MIN_BRIGHTNESS_ON = 0.2
MIN_BRIGHTNESS_OFF = 0.01
DIM_EMISSIVE = (0.1, 0.1, 0.1)

# -- Timing ------------------------------------------------------------------
AUDIO_REACTIVITY_TIMEOUT = 5.0  # seconds an audio message keeps control
TRANSITION_DURATION = 0.5       # proximity blend in/out, seconds
DISTANCE_OVERRIDE_THRESHOLD = 0.5  # meters

ROTATION_RATE = math.pi * 0.1  # radians/sec at full motor speed


class ControlSource(Enum):
    IDLE = "idle"
    PASSIVE = "passive"
    PROFILE = "profile"
    AUDIO = "audio"
    MANUAL = "manual"


def clamp(value, low=NORMALIZED_MIN, high=NORMALIZED_MAX):
    return min(max(value, low), high)


def lerp(a, b, t):
    return a + t * (b - a)


def map_range(value, in_min, in_max, out_min, out_max):
    return (value - in_min) * (out_max - out_min) / (in_max - in_min) + out_min


class Supply:
    def __init__(self, supply_id, kind, can_rotate=False, material_configs=None):
        self.id = supply_id
        self.kind = kind
        self.can_rotate = can_rotate
        self.material_configs = material_configs or []
        self.model = None
        self.target_materials = []
        self.standard_materials = []
        self.enabled = False
        self.brightness = 0.0
        self.audio_active = False
        self.target_magnitude = 0.0
        self.rotation = 0.0

    @property
    def intensity(self):
        if self.enabled:
            return max(MIN_BRIGHTNESS_ON, self.brightness)
        return MIN_BRIGHTNESS_OFF

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.kind,
            "enabled": self.enabled,
            "brightness": self.brightness,
            "intensity": self.intensity,
            "audioActive": self.audio_active,
            "rotation": self.rotation,
            "loaded": self.model is not None,
            "materials": [m.to_dict() for m in self.target_materials],
        }


def _material_config(raw):
    if isinstance(raw, str):
        return {"name": raw, "colorOverride": "", "isEmissive": False,
                "metalness": 0.0, "roughness": 0.8, "flatShading": True}
    return dict(raw) if isinstance(raw, dict) else {}


def _vector(raw, default=0.0):
    raw = raw if isinstance(raw, dict) else {}
    return [float(raw.get(axis, default)) for axis in ("x", "y", "z")]


class NeonController:
    def __init__(self, index, model_config=None, rng=None):
        self.index = index
        self.model_config = model_config or {}
        self.supplies = self._create_supplies(self.model_config)

        self.motor_enable = True
        self.direction = True
        self.current_speed = 0.0
        self.target_speed = 0.0
        self.distance = 0.0

        self.authority = ControlSource.IDLE
        self.audio_active = False
        self.audio_activity_timer = 0.0

        self._manual_pending = False
        self.values_manual = ManualState.blank(len(self.supplies))

        self.profile_executor = ProfileExecutor(rng=rng)
        self.profile_source = ControlSource.PROFILE
        self.profile_drives_motor = True
        self._profile_snapshot = None

        self.in_distance_override = False
        self.transition_timer = 0.0
        self._leaving = False
        self._values_last = ManualState.blank(len(self.supplies))
        self._values_target = ManualState.blank(len(self.supplies))

    def _create_supplies(self, model_config):
        supplies = []
        for raw in model_config.get("supplies") or []:
            if not isinstance(raw, dict):
                continue
            supplies.append(Supply(
                raw.get("id", len(supplies)),
                raw.get("type", f"supply{len(supplies)}"),
                bool(raw.get("canRotate", False)),
                [_material_config(m) for m in raw.get("materials") or []],
            ))
        return supplies

    # ------------------------------------------------------------------
    # Model loading
    # ------------------------------------------------------------------

    def load_models(self, loader, callback=None):
        """Load every unique model path once and attach a clone per supply.

        ``callback(success)`` reports whether at least one supply got a
        model. Supplies whose model failed stay usable without visuals.
        """
        supply_configs = self.model_config.get("supplies") or []
        paths = []
        for raw in supply_configs:
            path = (raw.get("model") or {}).get("path") if isinstance(raw, dict) else None
            if path and path not in paths:
                paths.append(path)

        if not paths:
            logger.error("No model paths configured for controller %d", self.index)
            if callback:
                callback(False)
            return

        loaded = {}

        def on_load(path, node):
            loaded[path] = node

        def on_error(path, exc):
            logger.error("Failed to load model %s for controller %d: %s",
                         path, self.index, exc)

        for path in paths:
            loader.load(path, lambda node, p=path: on_load(p, node),
                        lambda exc, p=path: on_error(p, exc))

        successful = 0
        for i, raw in enumerate(supply_configs):
            if i >= len(self.supplies) or not isinstance(raw, dict):
                continue
            model_cfg = raw.get("model") or {}
            base = loaded.get(model_cfg.get("path"))
            if base is None:
                continue
            node = base.clone()
            try:
                self._setup_model(node, model_cfg, self.supplies[i])
            except (KeyError, TypeError, ValueError):
                logger.exception("Failed to set up model for supply %d of controller %d",
                                 i, self.index)
                continue
            self.supplies[i].model = node
            successful += 1

        logger.info("Controller %d: %d/%d supply models ready",
                    self.index, successful, len(self.supplies))
        if callback:
            callback(successful > 0)

    def _setup_model(self, node, model_cfg, supply):
        node.position = _vector(model_cfg.get("position"))
        node.rotation = [math.radians(v) for v in _vector(model_cfg.get("rotation"))]
        scale = float(model_cfg.get("scale", 1.0))
        node.scale = [scale, scale, scale]

        materials = node.materials()
        supply.target_materials = []
        supply.standard_materials = []
        for cfg in supply.material_configs:
            material = materials.get(cfg.get("name"))
            if material is None:
                continue
            override = cfg.get("colorOverride") or ""
            if "roughness" in cfg:
                material.roughness = float(cfg["roughness"])
            if "metalness" in cfg:
                material.metalness = float(cfg["metalness"])
            if cfg.get("isEmissive"):
                if material.original_color is None:
                    material.original_color = (parse_color(override) if override
                                               else material.color)
                material.emissive = material.original_color
                material.emissive_intensity = MIN_BRIGHTNESS_OFF
                supply.target_materials.append(material)
            else:
                if override:
                    material.color = parse_color(override, material.color)
                material.flat_shading = bool(cfg.get("flatShading", material.flat_shading))
                supply.standard_materials.append(material)
        self.update_visuals()

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _select_authority(self):
        if self._manual_pending:
            return ControlSource.MANUAL
        if self.audio_active:
            return ControlSource.AUDIO
        if self.profile_executor.active:
            return self.profile_source
        return ControlSource.IDLE

    def update(self, delta_time):
        try:
            self.authority = self._select_authority()
            if self.authority is ControlSource.MANUAL:
                self._run_manual_mode()
            elif self.authority is ControlSource.AUDIO:
                self._run_audio_mode()
            elif self.authority in (ControlSource.PROFILE, ControlSource.PASSIVE):
                self._run_profile_mode(delta_time)

            self._run_distance_override(delta_time)
            self.update_visuals()
            self._update_rotation(delta_time)

            if self.audio_active:
                self.audio_activity_timer -= delta_time
                if self.audio_activity_timer <= 0:
                    self.audio_active = False
                    for supply in self.supplies:
                        supply.audio_active = False
        except Exception:
            logger.exception("Controller %d update failed", self.index)

    def _run_manual_mode(self):
        if self.profile_executor.active:
            self.stop_profile()
        for supply, values in zip(self.supplies, self.values_manual.supplies):
            supply.enabled = values.enabled
            supply.brightness = clamp(values.brightness)
        self.set_motor_enable(self.values_manual.motor_enable)
        self.set_direction(self.values_manual.motor_direction)
        self.set_speed(self.values_manual.motor_speed)
        self._manual_pending = False

    def _run_audio_mode(self):
        for supply in self.supplies:
            if supply.audio_active:
                supply.brightness = clamp(supply.target_magnitude)

    def _run_profile_mode(self, delta_time):
        for supply in self.supplies:
            supply.enabled = True

        if self._profile_snapshot is None:
            self._profile_snapshot = (
                [s.brightness for s in self.supplies], self.current_speed)

        values = OutputValues(
            supplies=[s.brightness for s in self.supplies],
            motor_value=self.current_speed,
        )
        if self.profile_executor.update_profile_values(delta_time, values):
            for supply, value in zip(self.supplies, values.supplies):
                supply.brightness = clamp(value)
            if self.profile_drives_motor:
                self.set_speed(values.motor_value)

    # ------------------------------------------------------------------
    # Proximity override
    # ------------------------------------------------------------------

    def _snapshot(self):
        return ManualState(
            supplies=[SupplyState(s.enabled, s.brightness) for s in self.supplies],
            motor_enable=self.motor_enable,
            motor_direction=self.direction,
            motor_speed=self.current_speed,
        )

    def _run_distance_override(self, delta_time):
        within = 0.0 < self.distance < DISTANCE_OVERRIDE_THRESHOLD

        if within:
            if not self.in_distance_override:
                self._values_last = self._snapshot()
                self.transition_timer = 0.0
                self.in_distance_override = True
                self._leaving = False
                for supply in self.supplies:
                    supply.enabled = True
                self.set_motor_enable(True)
            elif self._leaving:
                self._leaving = False
                self.transition_timer = TRANSITION_DURATION - self.transition_timer

            level = clamp(map_range(self.distance, DISTANCE_OVERRIDE_THRESHOLD, 0.0,
                                    NORMALIZED_MIN, NORMALIZED_MAX))
            self._values_target = ManualState(
                supplies=[SupplyState(True, level) for _ in self.supplies],
                motor_enable=True,
                motor_direction=not self._values_last.motor_direction,
                motor_speed=level,
            )

            self.transition_timer = min(self.transition_timer + delta_time,
                                        TRANSITION_DURATION)
            progress = self.transition_timer / TRANSITION_DURATION
            self._blend(self._values_last, self._values_target, progress)
            self.set_direction(self._values_target.motor_direction)

        elif self.in_distance_override:
            if not self._leaving:
                # Continue from the current blend position
                self._leaving = True
                self.transition_timer = TRANSITION_DURATION - self.transition_timer

            self.transition_timer = min(self.transition_timer + delta_time,
                                        TRANSITION_DURATION)
            progress = self.transition_timer / TRANSITION_DURATION
            self._blend(self._values_target, self._values_last, progress)
            self.set_direction(self._values_last.motor_direction)

            if self.transition_timer >= TRANSITION_DURATION:
                self.in_distance_override = False
                for supply, saved in zip(self.supplies, self._values_last.supplies):
                    supply.enabled = saved.enabled
                    supply.brightness = saved.brightness
                self.set_motor_enable(self._values_last.motor_enable)
                self.set_speed(self._values_last.motor_speed)

    def _blend(self, start, end, progress):
        for supply, a, b in zip(self.supplies, start.supplies, end.supplies):
            supply.brightness = clamp(lerp(a.brightness, b.brightness, progress))
        self.set_speed(lerp(start.motor_speed, end.motor_speed, progress))

    # ------------------------------------------------------------------
    # Visuals
    # ------------------------------------------------------------------

    def update_visuals(self):
        for supply in self.supplies:
            for material in supply.target_materials:
                if supply.enabled:
                    if material.original_color is not None:
                        material.emissive = material.original_color
                else:
                    material.emissive = DIM_EMISSIVE
                material.emissive_intensity = supply.intensity

    def _update_rotation(self, delta_time):
        if not self.motor_enable or self.current_speed <= 0:
            return
        step = self.current_speed * ROTATION_RATE * (1 if self.direction else -1) * delta_time
        for supply in self.supplies:
            if supply.can_rotate:
                supply.rotation += step
                if supply.model is not None:
                    supply.model.rotation[2] += step

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_manual_message(self, msg):
        self._manual_pending = True
        if self.profile_executor.active:
            self.stop_profile()
        self.values_manual = ManualState.from_dict(msg, self.values_manual)

    def handle_profile_message(self, msg, source=ControlSource.PROFILE):
        request = msg if isinstance(msg, ProfileRequest) else ProfileRequest.from_dict(
            msg, index=self.index)
        if request.stop_profile or not request.enabled:
            self.stop_profile()
            return
        self.start_profile(Profile(
            type=request.profile_type,
            magnitude=request.magnitude,
            frequency=request.frequency,
            phase=request.phase,
        ), source)

    def handle_audio_message(self, msg):
        """Take audio control for AUDIO_REACTIVITY_TIMEOUT seconds.

        ``msg["audio"]`` is a list of per-controller entries; only the one
        whose ``controllerIndex`` matches this controller is used.
        """
        self.audio_active = True
        self.audio_activity_timer = AUDIO_REACTIVITY_TIMEOUT
        for supply in self.supplies:
            supply.audio_active = False
            supply.target_magnitude = 0.0

        entries = msg.get("audio") if isinstance(msg, dict) else None
        entry = next((e for e in entries or []
                      if isinstance(e, dict) and e.get("controllerIndex") == self.index),
                     None)
        if entry is None:
            return

        magnitudes = {
            FREQ_LOW: entry.get("weightedLowMagnitude") or 0.0,
            FREQ_MID: entry.get("weightedMidMagnitude") or 0.0,
            FREQ_HIGH: entry.get("weightedHighMagnitude") or 0.0,
        }
        for supply, flag in zip(self.supplies, entry.get("audioSupplyFlags") or []):
            if not isinstance(flag, int) or flag == FREQ_NONE:
                continue
            selected = [mag for band, mag in magnitudes.items() if flag & band]
            if not selected:
                continue
            supply.audio_active = True
            supply.target_magnitude = max(selected)

    def start_profile(self, profile, source=ControlSource.PROFILE):
        # Passive profiles leave the motor to the idle choreographer
        self.profile_source = source
        self.profile_drives_motor = source is not ControlSource.PASSIVE
        self.profile_executor.start_profile(profile)

    def stop_profile(self):
        self.profile_executor.stop_profile()
        if self._profile_snapshot is not None:
            brightness, speed = self._profile_snapshot
            for supply, value in zip(self.supplies, brightness):
                supply.brightness = value
            self.set_speed(speed)
            self._profile_snapshot = None

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_motor_enable(self, enable):
        self.motor_enable = bool(enable)

    def set_direction(self, direction):
        self.direction = bool(direction)

    def set_speed(self, speed):
        self.current_speed = clamp(speed)

    def set_distance(self, distance):
        try:
            self.distance = float(distance)
        except (TypeError, ValueError):
            self.distance = 0.0

    @property
    def profile_active(self):
        return self.profile_executor.active

    def command(self):
        """Outbound command object mirroring a manual message."""
        return {
            "supplies": [{"enabled": s.enabled, "brightness": s.brightness}
                         for s in self.supplies],
            "motorEnable": self.motor_enable,
            "motorDirection": self.direction,
            "motorSpeed": self.current_speed,
        }

    def to_dict(self):
        state = self.command()
        state.update({
            "index": self.index,
            "supplies": [s.to_dict() for s in self.supplies],
            "distance": self.distance,
            "authority": self.authority.value,
            "profileActive": self.profile_active,
            "audioActive": self.audio_active,
            "distanceOverride": self.in_distance_override,
        })
        return state
