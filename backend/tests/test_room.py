import random

import pytest

from conftest import FakeSpectrumSource
from services.audio_analyzer import AudioAnalyzer
from services.model_loader import GltfLoader
from services.room import HOVER_DISTANCE, Room, new_client_id
from sim.neon_controller import ControlSource


class FakeBridge:
    def __init__(self):
        self.sent = []

    def publish(self, topic, payload, client_id=None):
        self.sent.append((topic, payload, client_id))
        return True

    def topics(self):
        return [t for t, _, _ in self.sent]


def make_room(document=None, bridge=None, loader=None):
    return Room("session-1", document, bridge=bridge, loader=loader,
                rng=random.Random(5),
                analyzer_factory=lambda: AudioAnalyzer(source=FakeSpectrumSource()))


def test_client_id_format():
    client_id = new_client_id()
    assert client_id.startswith("web_")
    assert len(client_id) == 12


def test_room_builds_every_device_from_bundled_schemas():
    room = make_room()
    assert len(room.neon["wallflower"].controllers) == 3
    assert len(room.neon["stool"].controllers) == 1
    assert (room.flipdisc.rows, room.flipdisc.cols) == (28, 28)


def test_room_loads_bundled_models():
    room = make_room(loader=GltfLoader())
    assert room.errors == []
    assert set(room.flipdisc.models) == {"frame", "disc"}
    assert room.neon["stool"].controllers[0].supplies[0].model is not None


def test_saved_document_is_restored():
    room = make_room({
        "clientId": "web_deadbeef",
        "lightsOn": False,
        "stool": {"controllers": [{"motorSpeed": 0.6}]},
        "flipDisc": {"pattern": {"id": 3, "speed": 1.0}},
        "discoKnob": {"rotation": {"speed": 0.7}},
    })
    room.update(0.1)

    assert room.client_id == "web_deadbeef"
    assert room.lights_on is False
    assert room.neon["stool"].controllers[0].current_speed == pytest.approx(0.6)
    assert room.flipdisc.display_mode == "pattern"
    assert room.discoknob.rotation_speed == 0.7


def test_manual_topic_routes_to_controller_and_publishes():
    bridge = FakeBridge()
    room = make_room(bridge=bridge)
    assert room.dispatch("wallflower/manual/2", {"motorSpeed": 0.9})
    room.update(0.1)

    assert room.neon["wallflower"].controllers[2].current_speed == pytest.approx(0.9)
    assert ("wallflower/manual/2", {"motorSpeed": 0.9}, room.client_id) in bridge.sent


def test_relayed_messages_are_not_republished():
    bridge = FakeBridge()
    room = make_room(bridge=bridge)
    room.dispatch("stool/profile", {"profileType": 0}, relayed=True)
    assert room.neon["stool"].controllers[0].profile_active
    assert bridge.sent == []

    room.dispatch("stool/profile", {"stopProfile": True})
    assert "stool/profile" in bridge.topics()


def test_flip_topics():
    bridge = FakeBridge()
    room = make_room(bridge=bridge)
    grid = [[0] * 28 for _ in range(28)]
    grid[0][0] = 1

    assert room.dispatch("flip/draw", grid)
    assert room.flipdisc.grid()[0][0] is True
    assert not room.dispatch("flip/draw", [[1]])

    assert room.dispatch("flip/pattern", {"id": 2, "name": "Spiral", "speed": 1.0})
    assert bridge.sent[-1][0] == "flip/pattern"
    assert bridge.sent[-1][1]["id"] == 2

    assert room.dispatch("flip/clear", None)
    assert room.flipdisc.display_mode == "none"


def test_disco_topic_updates_knob():
    bridge = FakeBridge()
    room = make_room(bridge=bridge)
    assert room.dispatch("smartknob/disco", {"rotation": {"speed": 0.2, "direction": False}})
    assert room.discoknob.direction is False
    assert bridge.topics() == ["smartknob/disco"]


def test_unknown_topics_are_rejected():
    room = make_room()
    assert not room.dispatch("", {})
    assert not room.dispatch("toaster/on", {})
    assert not room.dispatch("wallflower/explode", {})
    assert not room.dispatch("wallflower/manager/status", {"directControl": "manual"})


def test_audio_actions():
    room = make_room()
    assert room.audio("stool", "play")
    assert room.neon["stool"].direct_control is ControlSource.AUDIO
    assert room.audio("stool", "pause")
    assert room.audio("stool", "stop") is False

    with pytest.raises(ValueError):
        room.audio("stool", "dance")
    with pytest.raises(KeyError):
        room.audio("lamp", "play")


def test_hover_triggers_proximity_override():
    room = make_room()
    assert room.hover("wallflower", 1, True)
    room.update(0.1)
    controller = room.neon["wallflower"].controllers[1]
    assert controller.distance == HOVER_DISTANCE
    assert controller.in_distance_override

    room.hover("wallflower", 1, False)
    for _ in range(10):
        room.update(0.1)
    assert not controller.in_distance_override


def test_snapshot_shape():
    room = make_room()
    room.update(0.1)
    state = room.snapshot()
    assert state["clientId"] == room.client_id
    assert len(state["wallflower"]["controllers"]) == 3
    assert len(state["flipDisc"]["grid"]) == 28
    assert "rotation" in state["discoKnob"]


def test_spotlight_changes_are_sent_to_the_lights():
    bridge = FakeBridge()
    room = make_room(bridge=bridge)
    room.dispatch("smartknob/disco", {"spotlights": {"enabled": True, "color": "#ff00ff"}})
    assert bridge.topics() == ["smartknob/spotlights", "smartknob/disco"]
    assert bridge.sent[0][1]["color"] == "#ff00ff"

    bridge.sent.clear()
    room.dispatch("smartknob/disco", {"spotlights": {"color": "#00ffff"}}, relayed=True)
    assert bridge.sent == []
    assert room.discoknob.spotlights.color == "#00ffff"
