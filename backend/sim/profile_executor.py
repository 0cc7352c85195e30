"""Waveform generator that drives brightness and motor speed over time.

A profile is a small set of parameters (type, magnitude, frequency, phase).
The executor keeps its own elapsed-time clock and, once started, evaluates
the selected waveform every tick and writes the same scaled value into every
supply slot and the motor slot of the caller's value holder.
"""

import math
import random
from dataclasses import dataclass, field
from enum import IntEnum


class ProfileType(IntEnum):
    COSINE = 0
    BOUNCE = 1
    EXPONENTIAL = 2
    PULSE = 3
    TRIANGLE = 4
    ELASTIC = 5
    CASCADE = 6
    FLICKER = 7


# -- Heartbeat pulse shape ---------------------------------------------------
FIRST_PEAK_START = 0.0
FIRST_PEAK_END = 0.15
FIRST_RISE_RATIO = 0.3
FIRST_RISE_POWER = 1.5
FIRST_FALL_POWER = 2.0
FIRST_PULSE_HEIGHT = 1.0

SECOND_PEAK_START = 0.075
SECOND_PEAK_END = 0.40
SECOND_RISE_RATIO = 0.15
SECOND_RISE_POWER = 1.2
SECOND_FALL_POWER = 1.2
SECOND_PULSE_HEIGHT = 0.7

MIN_PULSE_VALUE = 0.08

# -- Other waveform shapes ---------------------------------------------------
ELASTIC_DECAY = 3.0
ELASTIC_OSCILLATIONS = 3.0
CASCADE_BOUNCES = 3.0
FLICKER_BASE = 0.5
FLICKER_VARIANCE = 0.8


@dataclass
class Profile:
    type: int = ProfileType.COSINE
    magnitude: float = 0.5
    frequency: float = 1.0
    phase: float = 0.0
    enabled: bool = True


@dataclass
class OutputValues:
    """Per-tick value holder filled by the executor."""
    supplies: list = field(default_factory=list)
    motor_value: float = 0.0


def _clamp01(value):
    return max(0.0, min(value, 1.0))


def _bump(position, start, end, rise_ratio, rise_power, fall_power, height):
    if not (start <= position < end):
        return 0.0
    phase = (position - start) / (end - start)
    if phase < rise_ratio:
        value = (phase / rise_ratio) ** rise_power
    else:
        value = (1.0 - (phase - rise_ratio) / (1.0 - rise_ratio)) ** fall_power
    return value * height


def heartbeat(t):
    first = _bump(t, FIRST_PEAK_START, FIRST_PEAK_END,
                  FIRST_RISE_RATIO, FIRST_RISE_POWER, FIRST_FALL_POWER,
                  FIRST_PULSE_HEIGHT)
    second = _bump(t, SECOND_PEAK_START, SECOND_PEAK_END,
                   SECOND_RISE_RATIO, SECOND_RISE_POWER, SECOND_FALL_POWER,
                   SECOND_PULSE_HEIGHT)
    return max(MIN_PULSE_VALUE, min(max(first, second), 1.0))


def waveform(profile_type, t, rng=random):
    """Evaluate a waveform at cycle position ``t`` in [0, 1).

    Returns a value clamped to [0, 1]. Unknown types evaluate to 0.
    Flicker draws fresh noise from ``rng`` on every call, so it is not
    reproducible unless ``rng`` is seeded.
    """
    if profile_type == ProfileType.COSINE:
        value = 0.5 + 0.5 * math.cos(2.0 * math.pi * t)
    elif profile_type == ProfileType.EXPONENTIAL:
        value = 1.0 - math.exp(-3.0 * t)
    elif profile_type == ProfileType.BOUNCE:
        value = 1.0 - (1.0 - t) * (1.0 - t)
    elif profile_type == ProfileType.PULSE:
        value = heartbeat(t)
    elif profile_type == ProfileType.TRIANGLE:
        value = 2.0 * t if t < 0.5 else 2.0 * (1.0 - t)
    elif profile_type == ProfileType.ELASTIC:
        value = 1.0 - math.exp(-ELASTIC_DECAY * t) * math.cos(
            2.0 * math.pi * ELASTIC_OSCILLATIONS * t)
    elif profile_type == ProfileType.CASCADE:
        # Negative lobes are clipped by the final clamp
        value = (1.0 - t) ** 2 * math.sin(2.0 * math.pi * CASCADE_BOUNCES * t)
    elif profile_type == ProfileType.FLICKER:
        noise = math.sin(t * 50.0 + rng.random() * 10.0)
        value = FLICKER_BASE + noise * FLICKER_VARIANCE
    else:
        value = 0.0
    return _clamp01(value)


class ProfileExecutor:
    """Stateful clock plus the parameters of the current profile.

    The elapsed-time accumulator is never reset by ``start_profile`` so a
    new profile picks up the existing clock; phase differences between
    controllers therefore stay meaningful across restarts.
    """

    def __init__(self, rng=None):
        self.active = False
        self.elapsed_time = 0.0
        self.current_profile = None
        self._rng = rng or random.Random()

    def start_profile(self, profile):
        self.current_profile = profile
        self.active = True

    def stop_profile(self):
        self.active = False
        self.current_profile = None

    def current_value(self):
        profile = self.current_profile
        if profile is None:
            return 0.0
        t = (self.elapsed_time * profile.frequency + (profile.phase or 0.0)) % 1.0
        return waveform(profile.type, t, self._rng)

    def update_profile_values(self, delta_time, values):
        """Advance the clock and write the scaled waveform into ``values``.

        Returns False without touching ``values`` when no profile is active.
        """
        if not self.active or self.current_profile is None:
            return False

        self.elapsed_time += delta_time
        scaled = _clamp01(self.current_value() * self.current_profile.magnitude)

        for i in range(len(values.supplies)):
            values.supplies[i] = scaled
        values.motor_value = scaled
        return True
