import math

import pytest

from sim.config import DiscoKnobConfig
from sim.disco_knob_manager import DiscoKnobManager


def test_rotation_follows_speed_and_direction():
    manager = DiscoKnobManager(config=DiscoKnobConfig.from_dict(
        {"rotation": {"enabled": True, "speed": 0.5, "direction": True}}))
    manager.update(1.0)
    assert manager.rotation == pytest.approx(0.5 * math.pi)

    manager.set_disco_data({"rotation": {"direction": False}})
    manager.update(2.0)
    assert manager.rotation == pytest.approx(-0.5 * math.pi)


def test_disabled_rotation_holds_still():
    manager = DiscoKnobManager()
    manager.set_disco_data({"rotation": {"enabled": False}})
    manager.update(5.0)
    assert manager.rotation == 0.0


def test_spotlight_changes_are_forwarded_once():
    seen = []
    manager = DiscoKnobManager(on_spotlights=seen.append)
    manager.set_disco_data({"spotlights": {"enabled": True, "color": "#00ff00"}})
    manager.set_disco_data({"spotlights": {"enabled": True, "color": "#00ff00"}})
    manager.set_disco_data({"rotation": {"speed": 0.3}})

    assert seen == [{"enabled": True, "color": "#00ff00", "mode": 0, "mode_speed": 0.0}]
    assert manager.rotation_speed == 0.3


class StubLoader:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.requested = []

    def load(self, path, on_load, on_error=None):
        self.requested.append(path)
        if path in self.fail:
            on_error(OSError(path))
        else:
            on_load(object())


def test_initialize_loads_knob_and_mount():
    schema = {"knob": {"model": {"path": "k.gltf"}}, "mount": {"model": {"path": "m.gltf"}}}
    results = []
    manager = DiscoKnobManager(model_schema=schema)
    manager.initialize(StubLoader(), results.append)
    assert results == [True]
    assert set(manager.models) == {"knob", "mount"}


def test_initialize_reports_missing_parts():
    results = []
    DiscoKnobManager(model_schema={}).initialize(StubLoader(), results.append)
    schema = {"knob": {"model": {"path": "k.gltf"}}, "mount": {"model": {"path": "m.gltf"}}}
    DiscoKnobManager(model_schema=schema).initialize(StubLoader(fail={"m.gltf"}), results.append)
    assert results == [False, False]


def test_state_wraps_angle():
    manager = DiscoKnobManager(config=DiscoKnobConfig.from_dict({"rotation": {"speed": 1.0}}))
    manager.update(3.0)
    angle = manager.to_dict()["rotation"]["angle"]
    assert 0.0 <= angle < 2 * math.pi
    assert angle == pytest.approx(math.pi)
