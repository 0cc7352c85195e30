"""Simulation of the smart-knob driven disco ball.

The ball spins around its vertical axis; spotlight settings are not
simulated, only handed on to whoever drives the real lights.
"""

import logging
import math

from sim.config import DiscoKnobConfig, RotationConfig

logger = logging.getLogger(__name__)

TWO_PI = 2 * math.pi


class DiscoKnobManager:
    def __init__(self, model_schema=None, config=None, on_spotlights=None):
        self.model_schema = model_schema or {}
        self.on_spotlights = on_spotlights
        self.models = {}
        self.is_loading = True

        config = config or DiscoKnobConfig()
        self.enabled = config.rotation.enabled
        self.rotation_speed = config.rotation.speed
        self.direction = config.rotation.direction
        self.spotlights = config.spotlights
        self.rotation = 0.0

    def initialize(self, loader, callback=None):
        """Load the knob and mount models; both are needed for success."""
        parts = {}
        for part in ("knob", "mount"):
            cfg = (self.model_schema.get(part) or {}).get("model") or {}
            if cfg.get("path"):
                parts[part] = cfg["path"]
        if not parts:
            logger.error("Invalid disco knob schema: missing knob or mount")
            self.is_loading = False
            if callback:
                callback(False)
            return

        for part, path in parts.items():
            loader.load(path,
                        lambda node, p=part: self.models.__setitem__(p, node),
                        lambda exc, p=part: logger.error("Error loading %s model: %s", p, exc))

        self.is_loading = False
        if callback:
            callback(all(p in self.models for p in ("knob", "mount")))

    def update(self, delta_time):
        if self.enabled:
            self.update_rotation(delta_time)

    def update_rotation(self, delta_time):
        amount = delta_time * math.pi * self.rotation_speed
        self.rotation += amount if self.direction else -amount

    def set_disco_data(self, disco_data):
        current = DiscoKnobConfig(
            rotation=RotationConfig(self.enabled, self.rotation_speed, self.direction),
            spotlights=self.spotlights,
        )
        config = DiscoKnobConfig.from_dict(disco_data, current)
        self.enabled = config.rotation.enabled
        self.rotation_speed = config.rotation.speed
        self.direction = config.rotation.direction

        spotlights_changed = config.spotlights != self.spotlights
        self.spotlights = config.spotlights
        if spotlights_changed and self.on_spotlights:
            self.on_spotlights(self.spotlights.to_wire())

    def to_dict(self):
        return {
            "rotation": {
                "enabled": self.enabled,
                "speed": self.rotation_speed,
                "direction": self.direction,
                "angle": self.rotation % TWO_PI,
            },
            "spotlights": self.spotlights.to_wire(),
        }
