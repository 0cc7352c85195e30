import pytest

from conftest import FakeSpectrumSource, neon_schema
from services.audio_analyzer import AudioAnalyzer
from sim.config import ProfileRequest
from sim.neon_manager import NeonManager
from sim.passive import (MOTOR_CHANGE_DURATION, PROFILE_SET_DURATION,
                         MotorChoreography, PassiveChoreographer, PassiveProfileSet)
from sim.profile_executor import ProfileType


def motor_set(**motor):
    return PassiveProfileSet(
        profile=ProfileRequest(profile_type=ProfileType.COSINE, magnitude=0.9,
                               frequency=0.5, phase=0.3),
        motor=MotorChoreography(**motor),
    )


def still_set():
    return PassiveProfileSet(
        profile=ProfileRequest(profile_type=ProfileType.PULSE, magnitude=0.9,
                               frequency=0.5, phase=0.3),
    )


def make_passive(rng, profile_sets, num_controllers=3):
    manager = NeonManager(
        neon_schema(num_controllers),
        num_controllers=num_controllers,
        analyzer=AudioAnalyzer(source=FakeSpectrumSource()),
        rng=rng,
    )
    manager.passive = PassiveChoreographer(manager, profile_sets=profile_sets, rng=rng)
    return manager, manager.passive


def test_motor_targets_change_every_interval(rng, monkeypatch):
    manager, passive = make_passive(rng, [motor_set()])
    calls = []
    original = passive.update_motor_targets

    def counted():
        calls.append(passive.state.motor_change_timer)
        original()

    monkeypatch.setattr(passive, "update_motor_targets", counted)

    passive.update(0.0)
    assert passive.active
    assert len(calls) == 1  # from the initial profile set

    for _ in range(int(MOTOR_CHANGE_DURATION) - 1):
        passive.update(1.0)
    assert len(calls) == 1
    assert not passive.state.motor_transitioning

    passive.update(1.0)
    assert len(calls) == 2
    assert passive.state.motor_transitioning


def test_motor_transition_is_linear_and_swaps_direction_late(rng, monkeypatch):
    manager, passive = make_passive(rng, [motor_set()], num_controllers=1)
    controller = manager.controllers[0]
    motor = passive.state.motor_states[0]
    motor.speed = 0.1
    motor.direction = True
    controller.set_direction(True)

    def fixed_targets():
        motor.target_speed = 0.3
        motor.target_direction = False

    monkeypatch.setattr(passive, "update_motor_targets", fixed_targets)
    passive.state.motor_change_timer = MOTOR_CHANGE_DURATION

    passive.update_motors(0.0)
    assert controller.current_speed == pytest.approx(0.1)

    passive.update_motors(0.5)
    assert controller.current_speed == pytest.approx(0.1 + 0.2 / 3)
    passive.update_motors(0.5)
    assert controller.current_speed == pytest.approx(0.1 + 0.4 / 3)
    assert controller.direction is True

    passive.update_motors(0.4)
    assert controller.direction is True
    passive.update_motors(0.05)
    assert controller.direction is False

    passive.update_motors(0.1)
    assert controller.current_speed == pytest.approx(0.3)
    assert not passive.state.motor_transitioning


def test_shared_speed_targets(rng):
    manager, passive = make_passive(rng, [motor_set(speed_range=(0.1, 0.3))])
    passive.update_motor_targets()
    speeds = {m.target_speed for m in passive.state.motor_states}
    assert len(speeds) == 1
    assert 0.1 <= speeds.pop() <= 0.3


def test_individual_speed_targets(rng):
    manager, passive = make_passive(
        rng, [motor_set(speed_range=(0.1, 0.3), individual_speeds=True)])
    passive.update_motor_targets()
    speeds = [m.target_speed for m in passive.state.motor_states]
    assert len(set(speeds)) == 3
    assert all(0.1 <= s <= 0.3 for s in speeds)


def test_direction_change_probability(rng):
    manager, passive = make_passive(rng, [motor_set(direction_change_prob=1.0)])
    passive.update_motor_targets()
    assert all(m.target_direction != m.direction for m in passive.state.motor_states)

    manager, passive = make_passive(rng, [motor_set(direction_change_prob=0.0)])
    passive.update_motor_targets()
    assert all(m.target_direction == m.direction for m in passive.state.motor_states)


def test_profile_set_switches_after_duration(rng, monkeypatch):
    manager, passive = make_passive(rng, [motor_set(), still_set()])
    applied = []
    original = passive.apply_profile_set

    def counted(index):
        applied.append(index)
        original(index)

    monkeypatch.setattr(passive, "apply_profile_set", counted)
    passive.update(0.0)
    assert len(applied) == 1

    passive.update_profile_sets(PROFILE_SET_DURATION - 1)
    assert len(applied) == 1
    passive.update_profile_sets(1.0)
    assert len(applied) == 2
    assert passive.state.profile_set_timer == 0.0
    assert all(c.profile_active for c in manager.controllers)


def test_set_without_motor_disables_motors(rng):
    manager, passive = make_passive(rng, [still_set()])
    passive.update(0.0)
    assert passive.active
    assert not any(c.motor_enable for c in manager.controllers)

    passive.state.motor_change_timer = MOTOR_CHANGE_DURATION
    passive.update(0.5)
    assert not any(c.motor_enable for c in manager.controllers)
