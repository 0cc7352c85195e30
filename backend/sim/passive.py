"""Idle choreography for a neon installation.

When nobody has driven an installation for a while (or nobody has driven it
yet) the manager hands its controllers to the choreographer, which
broadcasts a profile from a small library of "passive profile sets" and
slowly wanders the motors between random speeds and directions.
"""

import logging
import random
from dataclasses import dataclass, field

from sim.config import ProfileRequest
from sim.neon_controller import ControlSource, lerp
from sim.profile_executor import ProfileType

logger = logging.getLogger(__name__)

# -- Timing ------------------------------------------------------------------
PROFILE_SET_DURATION = 120.0      # seconds before switching profile sets
MOTOR_CHANGE_DURATION = 8.0       # seconds between new motor targets
MOTOR_TRANSITION_DURATION = 1.5   # seconds to reach a new motor target
DIRECTION_SWAP_PROGRESS = 0.95    # direction flips in the last 5% only
DEFAULT_MOTOR_SPEED = 0.2


@dataclass
class MotorChoreography:
    speed_range: tuple = (0.1, 0.3)
    direction_change_prob: float = 0.2
    enable_motor: bool = True
    individual_speeds: bool = False


@dataclass
class PassiveProfileSet:
    profile: ProfileRequest
    type: str = "sync"
    motor: MotorChoreography = None


PASSIVE_PROFILE_SETS = [
    PassiveProfileSet(
        profile=ProfileRequest(profile_type=ProfileType.COSINE, magnitude=0.9,
                               frequency=0.5, phase=0.3),
        motor=MotorChoreography(speed_range=(0.1, 0.3), direction_change_prob=0.2),
    ),
    PassiveProfileSet(
        profile=ProfileRequest(profile_type=ProfileType.PULSE, magnitude=0.9,
                               frequency=0.5, phase=0.3),
    ),
]


@dataclass
class MotorState:
    speed: float = DEFAULT_MOTOR_SPEED
    start_speed: float = DEFAULT_MOTOR_SPEED
    direction: bool = True
    target_speed: float = DEFAULT_MOTOR_SPEED
    target_direction: bool = False
    enabled: bool = True


@dataclass
class PassiveState:
    enabled: bool = True
    active: bool = False
    current_profile_set: int = 0
    profile_set_timer: float = 0.0
    profile_set_duration: float = PROFILE_SET_DURATION
    motor_change_timer: float = 0.0
    motor_change_duration: float = MOTOR_CHANGE_DURATION
    motor_transition_duration: float = MOTOR_TRANSITION_DURATION
    motor_transitioning: bool = False
    motor_transition_timer: float = 0.0
    motor_states: list = field(default_factory=list)

    def to_dict(self):
        return {
            "enabled": self.enabled,
            "active": self.active,
            "currentProfileSet": self.current_profile_set,
            "profileSetTimer": self.profile_set_timer,
            "motorTransitioning": self.motor_transitioning,
        }


class PassiveChoreographer:
    """Drives a manager's controllers while no user input is active.

    All outputs go through ``manager.send_profile_to_controller`` and the
    controllers' motor setters, so the same arbitration applies as for any
    other profile.
    """

    def __init__(self, manager, profile_sets=None, rng=None):
        self.manager = manager
        self.profile_sets = profile_sets or PASSIVE_PROFILE_SETS
        self.rng = rng or random.Random()
        self.state = PassiveState(motor_states=[
            MotorState(direction=self.rng.random() > 0.5)
            for _ in range(len(manager.controllers))
        ])

    @property
    def active(self):
        return self.state.active

    @property
    def current_set(self):
        if 0 <= self.state.current_profile_set < len(self.profile_sets):
            return self.profile_sets[self.state.current_profile_set]
        return None

    def update(self, delta_time):
        state = self.state
        if not state.enabled:
            if state.active:
                self.cleanup()
            return

        if self.manager.direct_control is not None or self.manager.audio_playing:
            if state.active:
                self.cleanup()
            return

        if not state.active:
            self._activate()

        self.update_motors(delta_time)
        self.update_profile_sets(delta_time)

    def _activate(self):
        state = self.state
        state.active = True
        state.profile_set_timer = 0.0
        state.motor_change_timer = 0.0
        state.current_profile_set = self.rng.randrange(len(self.profile_sets))
        logger.info("Passive mode active on %s (set %d)",
                    self.manager.device, state.current_profile_set)
        self.initialize_motor_states()
        self.apply_profile_set(state.current_profile_set)
        self.manager.publish_status()

    def set_enabled(self, enabled):
        self.state.enabled = bool(enabled)
        if not enabled and self.state.active:
            for idx in range(len(self.manager.controllers)):
                self.manager.send_profile_to_controller(
                    idx, ProfileRequest(stop_profile=True))
            self.state.active = False
            self.manager.publish_status()

    def cleanup(self):
        """Stop every passive profile and reset the passive timers."""
        for controller in self.manager.controllers:
            controller.stop_profile()
        state = self.state
        state.active = False
        state.motor_transitioning = False
        state.profile_set_timer = 0.0
        state.motor_change_timer = 0.0
        logger.info("Passive mode stopped on %s", self.manager.device)

    # ------------------------------------------------------------------
    # Profile sets
    # ------------------------------------------------------------------

    def update_profile_sets(self, delta_time):
        state = self.state
        state.profile_set_timer += delta_time
        if state.profile_set_timer >= state.profile_set_duration:
            state.profile_set_timer = 0.0
            state.current_profile_set = self.rng.randrange(len(self.profile_sets))
            self.apply_profile_set(state.current_profile_set)

    def apply_profile_set(self, set_index):
        if not 0 <= set_index < len(self.profile_sets):
            return
        profile_set = self.profile_sets[set_index]
        base = profile_set.profile
        count = len(self.manager.controllers)

        for idx in range(count):
            phase = base.phase
            if profile_set.type == "sync":
                # Ripple: spread the set's phase across controllers
                phase = (idx / count) * (base.phase or 0.0)
            request = ProfileRequest(
                index=idx,
                profile_type=base.profile_type,
                magnitude=base.magnitude,
                frequency=base.frequency,
                phase=phase,
                enabled=True,
            )
            self.manager.send_profile_to_controller(idx, request,
                                                    source=ControlSource.PASSIVE)

        self.update_motor_targets()

    # ------------------------------------------------------------------
    # Motors
    # ------------------------------------------------------------------

    def _random_speed(self, motor):
        low, high = motor.speed_range
        return low + self.rng.random() * (high - low)

    def initialize_motor_states(self):
        current = self.current_set
        if current is None:
            return
        motor = current.motor
        for idx, controller in enumerate(self.manager.controllers):
            if motor is None or not motor.enable_motor:
                controller.set_motor_enable(False)
                continue
            speed = self._random_speed(motor)
            direction = self.rng.random() > 0.5
            self.state.motor_states[idx] = MotorState(
                speed=speed, start_speed=speed, direction=direction, target_speed=speed,
                target_direction=direction, enabled=True)
            controller.set_motor_enable(True)
            controller.set_speed(speed)
            controller.set_direction(direction)

    def update_motor_targets(self):
        current = self.current_set
        if current is None or current.motor is None or not current.motor.enable_motor:
            return
        motor = current.motor
        shared_speed = None
        for idx, motor_state in enumerate(self.state.motor_states):
            if motor.individual_speeds or shared_speed is None:
                speed = self._random_speed(motor)
                if not motor.individual_speeds:
                    shared_speed = speed
            else:
                speed = shared_speed

            direction = motor_state.direction
            if self.rng.random() < motor.direction_change_prob:
                direction = not motor_state.direction

            motor_state.target_speed = speed
            motor_state.target_direction = direction

    def update_motors(self, delta_time):
        state = self.state
        state.motor_change_timer += delta_time
        if state.motor_change_timer >= state.motor_change_duration:
            state.motor_change_timer = 0.0
            state.motor_transitioning = True
            state.motor_transition_timer = 0.0
            self.update_motor_targets()
            for motor_state in state.motor_states:
                motor_state.start_speed = motor_state.speed

        if not state.motor_transitioning:
            return

        state.motor_transition_timer += delta_time
        progress = min(state.motor_transition_timer / state.motor_transition_duration, 1.0)
        current = self.current_set
        motor_on = current is not None and current.motor is not None and current.motor.enable_motor

        for controller, motor_state in zip(self.manager.controllers, state.motor_states):
            if not motor_on:
                controller.set_motor_enable(False)
                continue
            speed = lerp(motor_state.start_speed, motor_state.target_speed, progress)
            controller.set_speed(speed)
            motor_state.speed = speed
            if (progress >= DIRECTION_SWAP_PROGRESS
                    and motor_state.direction != motor_state.target_direction):
                controller.set_direction(motor_state.target_direction)
                motor_state.direction = motor_state.target_direction
            controller.set_motor_enable(True)

        if progress >= 1.0:
            state.motor_transitioning = False
