from sim.config import (FREQ_HIGH, FREQ_LOW, FREQ_NONE, AudioConfig, DiscoKnobConfig,
                        DrawingConfig, FlipDiscConfig, InstallationConfig, ManualState,
                        PatternConfig, ProfileRequest)


def test_manual_state_merges_over_fallback():
    fallback = ManualState.blank(2)
    merged = ManualState.from_dict({"supplies": [{"brightness": 0.4}], "motorSpeed": "0.7"},
                                   fallback)
    assert merged.supplies[0].brightness == 0.4
    assert merged.supplies[0].enabled is False
    assert merged.supplies[1].brightness == 0.0
    assert merged.motor_speed == 0.7


def test_manual_state_ignores_garbage():
    fallback = ManualState.blank(1)
    fallback.motor_speed = 0.3
    merged = ManualState.from_dict({"motorSpeed": "fast", "motorEnable": "yes"}, fallback)
    assert merged.motor_speed == 0.3
    assert merged.motor_enable is False


def test_manual_state_wire_round_trip():
    state = ManualState.from_dict({"supplies": [{"enabled": True, "brightness": 1.0}],
                                   "motorDirection": True}, ManualState.blank(1))
    assert state.to_wire() == {
        "supplies": [{"enabled": True, "brightness": 1.0}],
        "motorEnable": False,
        "motorDirection": True,
        "motorSpeed": 0.0,
    }


def test_profile_request_accepts_persisted_and_live_keys():
    persisted = ProfileRequest.from_dict({"type": 3, "enable": False}, index=2)
    live = ProfileRequest.from_dict({"profileType": 3, "enabled": True})
    assert persisted.profile_type == live.profile_type == 3
    assert persisted.index == 2
    assert persisted.enabled is False
    assert live.enabled is True


def test_profile_request_keeps_zero_magnitude():
    assert ProfileRequest.from_dict({"magnitude": 0}).magnitude == 0.0
    assert ProfileRequest.from_dict({}).magnitude == 0.5


def test_stop_profile_must_be_true():
    assert ProfileRequest.from_dict({"stopProfile": True}).stop_profile
    assert not ProfileRequest.from_dict({"stopProfile": "true"}).stop_profile


def test_audio_config_defaults():
    config = AudioConfig.defaults(3, 2)
    assert config.mode == "fixed"
    assert config.fast_alpha == 0.9
    assert config.slow_alpha == 0.2
    assert config.thresholds == [0.25, 0.25, 0.25]
    assert config.supply_flags == [[FREQ_NONE, FREQ_NONE]] * 3


def test_audio_config_keeps_shape_and_rejects_bad_flags():
    fallback = AudioConfig.defaults(2, 2)
    config = AudioConfig.from_dict({
        "audioSupplyFlags": [[FREQ_LOW, 9, FREQ_HIGH], "nope", [FREQ_HIGH]],
        "audioMagnitudeThresholds": [0.1],
    }, fallback)
    assert config.supply_flags == [[FREQ_LOW, FREQ_NONE], [FREQ_NONE, FREQ_NONE]]
    assert config.thresholds == [0.1, 0.25, 0.25]


def test_installation_config_from_partial_document():
    config = InstallationConfig.from_dict({
        "controllers": [None, {"motorSpeed": 0.5}],
        "profiles": [{"profileType": 1}],
    }, num_controllers=3, supplies_per_controller=2)

    assert config.controllers[0] is None
    assert config.controllers[1].motor_speed == 0.5
    assert len(config.controllers[1].supplies) == 2
    assert config.controllers[2] is None
    assert config.profiles[0].profile_type == 1
    assert len(config.audio.supply_flags) == 3


def test_installation_config_from_nothing():
    config = InstallationConfig.from_dict(None, 1, 2)
    assert config.controllers == [None]
    assert config.profiles == []


def test_pattern_and_drawing_configs():
    assert PatternConfig.from_dict({}) == PatternConfig(1, "Clock", 2.0, True)
    drawing = DrawingConfig.from_dict([[1, 0], [0, 1]])
    assert drawing.grid == [[1, 0], [0, 1]]
    assert drawing.invert is False
    assert DrawingConfig.from_dict({"grid": [[1]], "invert": True}).invert is True

    flip = FlipDiscConfig.from_dict({"pattern": {"id": 3, "speed": 1.5}})
    assert flip.pattern.id == 3
    assert flip.drawing is None


def test_disco_config_merges_over_fallback():
    fallback = DiscoKnobConfig.from_dict({"rotation": {"speed": 0.4}})
    config = DiscoKnobConfig.from_dict({"spotlights": {"enabled": True, "color": "#ff0000"}},
                                       fallback)
    assert config.rotation.speed == 0.4
    assert config.rotation.enabled is True
    assert config.spotlights.enabled is True
    assert config.spotlights.color == "#ff0000"


def test_supply_flags_accept_band_masks():
    config = AudioConfig.from_dict({
        "audioSupplyFlags": [[FREQ_LOW | FREQ_HIGH, 7], [-1, 8]],
    }, AudioConfig.defaults(2, 2))
    assert config.supply_flags == [[FREQ_LOW | FREQ_HIGH, 7], [FREQ_NONE, FREQ_NONE]]
