import numpy as np
import pytest

from conftest import FakeSpectrumSource, neon_schema
from services.audio_analyzer import AudioAnalyzer
from sim.config import FREQ_HIGH, FREQ_LOW, FREQ_MID, FREQ_NONE
from sim.neon_controller import ControlSource
from sim.neon_manager import NeonManager, threshold_index


class Recorder:
    def __init__(self):
        self.messages = []

    def __call__(self, topic, payload):
        self.messages.append((topic, payload))
        return True

    def topics(self):
        return [t for t, _ in self.messages]


def make_manager(rng, analyzer=None, num_controllers=3, document=None, publish=None):
    return NeonManager(
        neon_schema(num_controllers),
        initial_state=document,
        num_controllers=num_controllers,
        device="wallflower",
        publish=publish,
        analyzer=analyzer or AudioAnalyzer(source=FakeSpectrumSource()),
        rng=rng,
    )


def magnitudes(low=0.0, mid=0.0, high=0.0):
    return [low] + [0.0] * 4 + [mid] + [0.0] * 4 + [high] + [0.0] * 4


def test_threshold_index_maps_bands():
    assert threshold_index(FREQ_LOW) == 0
    assert threshold_index(FREQ_MID) == 1
    assert threshold_index(FREQ_HIGH) == 2


def test_idle_installation_enters_passive_mode(rng, monkeypatch):
    manager = make_manager(rng)
    calls = []
    original = manager.send_profile_to_controller

    def spy(index, profile, source=ControlSource.PROFILE):
        calls.append((index, source))
        return original(index, profile, source)

    monkeypatch.setattr(manager, "send_profile_to_controller", spy)

    for _ in range(61):
        manager.update(1.0)

    assert manager.passive.active
    assert calls
    assert all(source is ControlSource.PASSIVE for _, source in calls)
    assert all(c.authority is ControlSource.PASSIVE for c in manager.controllers)


def test_manual_request_preempts_passive(rng):
    publish = Recorder()
    manager = make_manager(rng, publish=publish)
    manager.update(0.1)
    assert manager.passive.active

    manager.handle_manual_request({"supplies": [{"enabled": True, "brightness": 0.9}]}, 1)
    manager.update(0.1)

    assert not manager.passive.active
    assert manager.direct_control is ControlSource.MANUAL
    assert manager.controllers[1].supplies[0].brightness == pytest.approx(0.9)
    assert "wallflower/manual/1" in publish.topics()
    assert "wallflower/manager/status" in publish.topics()


def test_direct_control_released_after_inactivity(rng):
    manager = make_manager(rng)
    manager.handle_manual_request({"motorSpeed": 0.5}, 0)

    for _ in range(60):
        manager.update(1.0)
    assert manager.direct_control is ControlSource.MANUAL

    manager.update(1.0)
    assert manager.direct_control is None
    assert manager.passive.active


def test_disabled_passive_mode_stays_idle(rng):
    manager = make_manager(rng)
    manager.set_passive_mode_enabled(False)
    manager.update(0.1)
    assert not manager.passive.active
    assert all(c.authority is ControlSource.IDLE for c in manager.controllers)


def test_fixed_pulse_marks_configured_supplies(rng):
    manager = make_manager(rng)
    manager.handle_audio_config_request({
        "audioSupplyFlags": [[FREQ_LOW, FREQ_NONE], [FREQ_NONE, FREQ_NONE],
                             [FREQ_NONE, FREQ_NONE]],
    })

    assert manager.generate_pulse(magnitudes(low=0.3))
    message = manager.audio_messages[0]
    assert message["audioSupplyFlags"] == [FREQ_LOW, FREQ_NONE]
    assert message["frequencyFlag"] == FREQ_LOW
    assert message["weightedLowMagnitude"] == pytest.approx(0.3)

    manager.dispatch_audio_messages()
    controller = manager.controllers[0]
    assert controller.supplies[0].audio_active
    assert controller.supplies[0].target_magnitude == pytest.approx(0.3)
    assert not controller.supplies[1].audio_active
    assert not manager.controllers[1].audio_active


def test_quiet_band_produces_no_pulse(rng):
    manager = make_manager(rng)
    manager.handle_audio_config_request({"audioSupplyFlags": [[FREQ_LOW, FREQ_LOW]]})
    assert not manager.generate_pulse(magnitudes(low=0.2))


def test_per_band_thresholds(rng):
    manager = make_manager(rng)
    manager.handle_audio_config_request({"audioMagnitudeThresholds": [0.5, 0.1, 0.1]})
    manager.update_frequency_magnitudes(magnitudes(low=0.3, mid=0.2, high=0.05))

    assert not manager.is_above_threshold(FREQ_LOW)
    assert manager.is_above_threshold(FREQ_MID)
    assert not manager.is_above_threshold(FREQ_HIGH)
    assert manager.is_above_threshold(FREQ_LOW | FREQ_MID)


def test_band_peak_is_max_of_its_bins(rng):
    manager = make_manager(rng)
    values = [0.1, 0.4, 0.2, 0.0, 0.0, 0.0, 0.0, 0.6, 0.0, 0.0] + [0.05] * 5
    manager.update_frequency_magnitudes(values)
    assert manager.prevailing_low == pytest.approx(0.4)
    assert manager.prevailing_mid == pytest.approx(0.6)
    assert manager.prevailing_high == pytest.approx(0.05)


def test_playing_audio_takes_direct_control(rng):
    spectrum = np.zeros(512, dtype=np.uint8)
    spectrum[1:6] = 255
    manager = make_manager(rng, analyzer=AudioAnalyzer(source=FakeSpectrumSource(spectrum)))
    manager.initialize()
    manager.handle_audio_config_request({"audioSupplyFlags": [[FREQ_LOW, FREQ_NONE]]})

    assert manager.play_audio()
    manager.update(0.1)

    assert manager.direct_control is ControlSource.AUDIO
    assert manager.controllers[0].authority is ControlSource.AUDIO
    assert not manager.passive.active

    manager.stop_audio()
    assert not manager.audio_playing


def test_audio_config_request_is_published(rng):
    publish = Recorder()
    manager = make_manager(rng, publish=publish)
    manager.handle_audio_config_request({"audioFastAlpha": 0.5, "audioMode": "bogus"})

    topic, payload = publish.messages[-1]
    assert topic == "wallflower/audio_config"
    assert payload["audioFastAlpha"] == 0.5
    assert payload["audioMode"] == "fixed"
    assert manager.audio_analyzer.fast_alpha == 0.5


def test_profile_array_spreads_phase_across_enabled(rng):
    manager = make_manager(rng)
    manager.handle_profile_request([
        {"profileType": 0, "phase": 0.0, "phaseOffset": 0.6},
        {"profileType": 0, "phase": 0.0},
        {"profileType": 0, "phase": 0.0, "enabled": False},
    ])

    c0, c1, c2 = manager.controllers
    assert c0.profile_executor.current_profile.phase == pytest.approx(0.0)
    assert c1.profile_executor.current_profile.phase == pytest.approx(0.3)
    assert not c2.profile_active
    assert manager.direct_control is ControlSource.PROFILE


def test_single_profile_dict_targets_its_index(rng):
    manager = make_manager(rng)
    manager.handle_profile_request({"index": 2, "profileType": 3})
    assert manager.controllers[2].profile_active
    assert not manager.controllers[0].profile_active


def test_stop_profile_request_stops_all(rng):
    publish = Recorder()
    manager = make_manager(rng, publish=publish)
    manager.handle_profile_request([{"profileType": 0}, {"profileType": 1}, {"profileType": 2}])
    manager.handle_profile_request({"stopProfile": True})

    assert not any(c.profile_active for c in manager.controllers)
    assert publish.messages[-1] == ("wallflower/profile", {"stopProfile": True})


def test_out_of_range_requests_are_ignored(rng):
    publish = Recorder()
    manager = make_manager(rng, publish=publish)
    manager.update(0.1)
    assert manager.passive.active
    publish.messages.clear()

    assert not manager.send_profile_to_controller(7, {"profileType": 0})
    assert not manager.set_distance(-1, 0.2)
    assert not manager.handle_manual_request({}, 5)

    assert manager.passive.active
    assert manager.direct_control is None
    assert all(c.profile_active for c in manager.controllers)
    assert publish.messages == []


def test_saved_state_is_restored(rng):
    document = {
        "controllers": [{"supplies": [{"enabled": True, "brightness": 0.8}],
                         "motorSpeed": 0.25}],
        "profiles": [{"enable": False}, {"profileType": 4, "enable": True}],
        "audioConfig": {"audioMagnitudeThresholds": [0.4, 0.3, 0.2]},
    }
    manager = make_manager(rng, document=document)
    manager.initialize()
    manager.update(0.1)

    assert manager.controllers[0].supplies[0].brightness == pytest.approx(0.8)
    assert manager.controllers[1].profile_active
    assert manager.audio_config.thresholds == [0.4, 0.3, 0.2]
