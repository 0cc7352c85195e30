"""Typed configuration for the simulated devices.

Everything that arrives from persistence or the message bridge is a JSON
document of uncertain shape. Each ``from_dict`` here merges such a document
field by field against defaults, so the simulation only ever sees fully
populated objects. Bad or missing values fall back silently.
"""

from dataclasses import dataclass, field

# -- Frequency band flags ----------------------------------------------------
FREQ_NONE = 0x00
FREQ_LOW = 0x01
FREQ_MID = 0x02
FREQ_HIGH = 0x04
BAND_FLAGS = (FREQ_LOW, FREQ_MID, FREQ_HIGH)
FREQ_ALL = FREQ_LOW | FREQ_MID | FREQ_HIGH

BINS_PER_BAND = 5
DEFAULT_THRESHOLD = 0.25

DEFAULT_LOW_WEIGHTS = [0.4, 0.4, 0.1, 0.1, 0.0]
DEFAULT_MID_WEIGHTS = [0.2, 0.2, 0.2, 0.2, 0.2]
DEFAULT_HIGH_WEIGHTS = [0.5, 0.5, 0.0, 0.0, 0.0]

AUDIO_MODES = ("fixed", "random", "sequential")


def _float(value, default):
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if result != result:  # NaN
        return default
    return result


def _bool(value, default):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _int(value, default):
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float_list(value, default):
    """Merge a list of floats against ``default``, keeping its length."""
    if not isinstance(value, (list, tuple)):
        return list(default)
    merged = []
    for i, fallback in enumerate(default):
        merged.append(_float(value[i], fallback) if i < len(value) else fallback)
    return merged


def _dict(value):
    return value if isinstance(value, dict) else {}


def _list(value):
    return value if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# Neon devices
# ---------------------------------------------------------------------------

@dataclass
class SupplyState:
    enabled: bool = False
    brightness: float = 0.0

    @classmethod
    def from_dict(cls, data, fallback=None):
        data = _dict(data)
        fallback = fallback or cls()
        return cls(
            enabled=_bool(data.get("enabled"), fallback.enabled),
            brightness=_float(data.get("brightness"), fallback.brightness),
        )

    def to_wire(self):
        return {"enabled": self.enabled, "brightness": self.brightness}


@dataclass
class ManualState:
    """Supply and motor values as carried by a manual message."""
    supplies: list = field(default_factory=list)
    motor_enable: bool = False
    motor_direction: bool = False
    motor_speed: float = 0.0

    @classmethod
    def blank(cls, num_supplies):
        return cls(supplies=[SupplyState() for _ in range(num_supplies)])

    @classmethod
    def from_dict(cls, data, fallback):
        data = _dict(data)
        supplies = [SupplyState(s.enabled, s.brightness) for s in fallback.supplies]
        raw_supplies = data.get("supplies")
        if isinstance(raw_supplies, list):
            for i, raw in enumerate(raw_supplies):
                if i < len(supplies):
                    supplies[i] = SupplyState.from_dict(raw, supplies[i])
                else:
                    supplies.append(SupplyState.from_dict(raw))
        return cls(
            supplies=supplies,
            motor_enable=_bool(data.get("motorEnable"), fallback.motor_enable),
            motor_direction=_bool(data.get("motorDirection"), fallback.motor_direction),
            motor_speed=_float(data.get("motorSpeed"), fallback.motor_speed),
        )

    def to_wire(self):
        return {
            "supplies": [s.to_wire() for s in self.supplies],
            "motorEnable": self.motor_enable,
            "motorDirection": self.motor_direction,
            "motorSpeed": self.motor_speed,
        }


@dataclass
class ProfileRequest:
    index: int = 0
    profile_type: int = 0
    magnitude: float = 0.5
    frequency: float = 1.0
    phase: float = 0.0
    enabled: bool = True
    stop_profile: bool = False
    phase_offset: float = 0.0

    @classmethod
    def from_dict(cls, data, index=0):
        data = _dict(data)
        # Persisted documents use "enable", live messages use "enabled"
        enabled = data.get("enabled", data.get("enable"))
        return cls(
            index=_int(data.get("index"), index),
            profile_type=_int(data.get("profileType", data.get("type")), 0),
            magnitude=_float(data.get("magnitude"), 0.5),
            frequency=_float(data.get("frequency"), 1.0),
            phase=_float(data.get("phase"), 0.0),
            enabled=_bool(enabled, True),
            stop_profile=data.get("stopProfile") is True,
            phase_offset=_float(data.get("phaseOffset"), 0.0),
        )

    def to_wire(self):
        return {
            "index": self.index,
            "profileType": self.profile_type,
            "magnitude": self.magnitude,
            "frequency": self.frequency,
            "phase": self.phase,
            "enabled": self.enabled,
            "stopProfile": self.stop_profile,
        }


@dataclass
class BandWeights:
    low: list = field(default_factory=lambda: list(DEFAULT_LOW_WEIGHTS))
    mid: list = field(default_factory=lambda: list(DEFAULT_MID_WEIGHTS))
    high: list = field(default_factory=lambda: list(DEFAULT_HIGH_WEIGHTS))

    @classmethod
    def from_dict(cls, data, fallback=None):
        data = _dict(data)
        fallback = fallback or cls()
        return cls(
            low=_float_list(data.get("low"), fallback.low),
            mid=_float_list(data.get("mid"), fallback.mid),
            high=_float_list(data.get("high"), fallback.high),
        )

    def to_wire(self):
        return {"low": list(self.low), "mid": list(self.mid), "high": list(self.high)}


def _flag(value):
    """Band bitmask; anything outside 0..7 is FREQ_NONE."""
    flag = _int(value, FREQ_NONE)
    return flag if 0 <= flag <= FREQ_ALL else FREQ_NONE


@dataclass
class AudioConfig:
    mode: str = "fixed"
    allow_multiple_active: bool = False
    weights: BandWeights = field(default_factory=BandWeights)
    fast_alpha: float = 0.9
    slow_alpha: float = 0.2
    supply_flags: list = field(default_factory=list)
    thresholds: list = field(default_factory=lambda: [DEFAULT_THRESHOLD] * 3)

    @classmethod
    def defaults(cls, num_controllers, supplies_per_controller):
        return cls(supply_flags=[
            [FREQ_NONE] * supplies_per_controller for _ in range(num_controllers)
        ])

    @classmethod
    def from_dict(cls, data, fallback):
        """Merge a wire/persisted audio config over ``fallback``.

        Supply flag rows keep the fallback's shape: rows or entries the
        document does not mention keep their previous flag.
        """
        data = _dict(data)
        mode = data.get("audioMode", fallback.mode)
        flags = [list(row) for row in fallback.supply_flags]
        raw_flags = data.get("audioSupplyFlags")
        if isinstance(raw_flags, list):
            for c, raw_row in enumerate(raw_flags):
                if c >= len(flags) or not isinstance(raw_row, list):
                    continue
                for s, raw in enumerate(raw_row):
                    if s < len(flags[c]):
                        flags[c][s] = _flag(raw)
        return cls(
            mode=mode if mode in AUDIO_MODES else fallback.mode,
            allow_multiple_active=_bool(data.get("audioAllowMultipleActive"),
                                        fallback.allow_multiple_active),
            weights=BandWeights.from_dict(data.get("audioWeights"), fallback.weights),
            fast_alpha=_float(data.get("audioFastAlpha"), fallback.fast_alpha),
            slow_alpha=_float(data.get("audioSlowAlpha"), fallback.slow_alpha),
            supply_flags=flags,
            thresholds=_float_list(data.get("audioMagnitudeThresholds"),
                                   fallback.thresholds),
        )

    def to_wire(self):
        return {
            "audioMode": self.mode,
            "audioAllowMultipleActive": self.allow_multiple_active,
            "audioWeights": self.weights.to_wire(),
            "audioFastAlpha": self.fast_alpha,
            "audioSlowAlpha": self.slow_alpha,
            "audioSupplyFlags": [list(row) for row in self.supply_flags],
            "audioMagnitudeThresholds": list(self.thresholds),
        }


@dataclass
class InstallationConfig:
    """Saved state of one neon installation (wallflower or stool)."""
    controllers: list = field(default_factory=list)
    profiles: list = field(default_factory=list)
    audio: AudioConfig = None

    @classmethod
    def from_dict(cls, data, num_controllers, supplies_per_controller):
        data = _dict(data)
        raw_controllers = _list(data.get("controllers"))
        controllers = []
        for i in range(num_controllers):
            blank = ManualState.blank(supplies_per_controller)
            if i < len(raw_controllers) and isinstance(raw_controllers[i], dict):
                controllers.append(ManualState.from_dict(raw_controllers[i], blank))
            else:
                controllers.append(None)

        profiles = []
        for i, raw in enumerate(_list(data.get("profiles"))):
            if isinstance(raw, dict):
                profiles.append(ProfileRequest.from_dict(raw, index=i))

        audio = AudioConfig.from_dict(
            data.get("audioConfig"),
            AudioConfig.defaults(num_controllers, supplies_per_controller),
        )
        return cls(controllers=controllers, profiles=profiles, audio=audio)


# ---------------------------------------------------------------------------
# Flip-disc display
# ---------------------------------------------------------------------------

@dataclass
class PatternConfig:
    id: int = 1
    name: str = "Clock"
    speed: float = 2.0
    enable: bool = True

    @classmethod
    def from_dict(cls, data):
        data = _dict(data)
        speed = _float(data.get("speed"), 2.0)
        return cls(
            id=_int(data.get("id"), 1),
            name=str(data.get("name") or "Clock"),
            speed=speed if speed > 0 else 1.0,
            enable=_bool(data.get("enable"), True),
        )

    def to_wire(self):
        return {"id": self.id, "name": self.name, "speed": self.speed,
                "enable": self.enable}


@dataclass
class DrawingConfig:
    grid: list = None
    invert: bool = False

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, list):
            return cls(grid=data)
        data = _dict(data)
        grid = data.get("grid")
        return cls(grid=grid if isinstance(grid, list) else None,
                   invert=_bool(data.get("invert"), False))


@dataclass
class FlipDiscConfig:
    pattern: PatternConfig = None
    drawing: DrawingConfig = None

    @classmethod
    def from_dict(cls, data):
        data = _dict(data)
        return cls(
            pattern=PatternConfig.from_dict(data["pattern"]) if data.get("pattern") else None,
            drawing=DrawingConfig.from_dict(data["drawing"]) if data.get("drawing") else None,
        )


# ---------------------------------------------------------------------------
# Disco knob
# ---------------------------------------------------------------------------

@dataclass
class RotationConfig:
    enabled: bool = True
    speed: float = 0.1
    direction: bool = True

    @classmethod
    def from_dict(cls, data, fallback=None):
        data = _dict(data)
        fallback = fallback or cls()
        return cls(
            enabled=_bool(data.get("enabled"), fallback.enabled),
            speed=_float(data.get("speed"), fallback.speed),
            direction=_bool(data.get("direction"), fallback.direction),
        )


@dataclass
class SpotlightConfig:
    enabled: bool = False
    color: str = "#ffffff"
    mode: int = 0
    mode_speed: float = 0.0

    @classmethod
    def from_dict(cls, data, fallback=None):
        data = _dict(data)
        fallback = fallback or cls()
        color = data.get("color")
        return cls(
            enabled=_bool(data.get("enabled"), fallback.enabled),
            color=color if isinstance(color, str) and color else fallback.color,
            mode=_int(data.get("mode"), fallback.mode),
            mode_speed=_float(data.get("mode_speed"), fallback.mode_speed),
        )

    def to_wire(self):
        return {"enabled": self.enabled, "color": self.color, "mode": self.mode,
                "mode_speed": self.mode_speed}


@dataclass
class DiscoKnobConfig:
    rotation: RotationConfig = field(default_factory=RotationConfig)
    spotlights: SpotlightConfig = field(default_factory=SpotlightConfig)

    @classmethod
    def from_dict(cls, data, fallback=None):
        data = _dict(data)
        fallback = fallback or cls()
        return cls(
            rotation=RotationConfig.from_dict(data.get("rotation"), fallback.rotation),
            spotlights=SpotlightConfig.from_dict(data.get("spotlights"), fallback.spotlights),
        )
