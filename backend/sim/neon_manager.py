"""Manager for one neon installation (a fixed set of controllers).

The manager decides each tick which control source drives the installation
as a whole, runs the audio pipeline, hands idle installations to the
passive choreographer, and routes inbound requests to the right controller.
Its ``handle_*_request`` methods are also the only place that publishes
device commands.

Tick order matters: audio runs first so that an audio pulse claims direct
control before the passive check on the same tick, and controllers update
last so they see everything decided this tick.
"""

import logging
import random

from services.audio_analyzer import AudioAnalyzer
from sim.config import (BAND_FLAGS, BINS_PER_BAND, FREQ_HIGH, FREQ_LOW,
                        FREQ_MID, FREQ_NONE, AudioConfig, InstallationConfig,
                        ProfileRequest)
from sim.neon_controller import ControlSource, NeonController
from sim.passive import PassiveChoreographer

logger = logging.getLogger(__name__)

INACTIVITY_THRESHOLD = 60.0  # seconds without user input before passive mode

_BAND_INDEX = {FREQ_LOW: 0, FREQ_MID: 1, FREQ_HIGH: 2}
DIRECT_SOURCES = (ControlSource.MANUAL, ControlSource.PROFILE, ControlSource.AUDIO)


def threshold_index(frequency_flag):
    return _BAND_INDEX.get(frequency_flag, 0)


class NeonManager:
    """Owns the controllers, audio analyzer and idle choreography.

    Args:
        model_schema: list of per-controller configs (``supplies`` with
            ``id``, ``type``, ``canRotate``, ``model`` and ``materials``).
        initial_state: saved installation document (may be empty or partial).
        num_controllers: how many controllers to create at most.
        device: topic prefix, e.g. "wallflower" or "stool".
        publish: ``publish(topic, payload) -> bool`` for outbound commands.
        analyzer: AudioAnalyzer instance; a WAV-backed one by default.
        rng: random source shared by the profile executors and passive mode.
    """

    def __init__(self, model_schema, initial_state=None, num_controllers=1,
                 device="wallflower", publish=None, analyzer=None, rng=None):
        self.device = device
        self.model_schema = list(model_schema or [])
        self._publish = publish
        self.rng = rng or random.Random()

        count = min(len(self.model_schema), num_controllers)
        self.controllers = [
            NeonController(i, self.model_schema[i], rng=self.rng) for i in range(count)
        ]
        self.num_controllers = num_controllers
        supplies_per_controller = max(
            [len(c.supplies) for c in self.controllers] or [2])

        self.initial_state = InstallationConfig.from_dict(
            initial_state, num_controllers, supplies_per_controller)
        self.audio_config = self.initial_state.audio
        self.audio_analyzer = analyzer if analyzer is not None else AudioAnalyzer()
        self.audio_reactivity_enabled = True

        self.prevailing_low = 0.0
        self.prevailing_mid = 0.0
        self.prevailing_high = 0.0
        self.audio_messages = [self._blank_audio_message(i) for i in range(num_controllers)]
        self.pulse_ready = False

        self.direct_control = None
        self.clock = 0.0
        self.last_user_action_time = 0.0
        self.inactivity_threshold = INACTIVITY_THRESHOLD

        self.passive = PassiveChoreographer(self, rng=self.rng)

    @staticmethod
    def _blank_audio_message(index):
        return {
            "controllerIndex": index,
            "frequencyFlag": FREQ_NONE,
            "weightedLowMagnitude": 0.0,
            "weightedMidMagnitude": 0.0,
            "weightedHighMagnitude": 0.0,
            "audioSupplyFlags": [],
        }

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self, loader=None, callback=None):
        """Restore saved state, load models and bring up the audio analyzer.

        ``callback(success)`` is True only when every controller loaded at
        least one model.
        """
        self.apply_initial_state()

        results = []
        if loader is not None:
            for controller in self.controllers:
                controller.load_models(loader, results.append)
        if not self.controllers:
            logger.warning("No controllers to initialize for %s", self.device)

        self.initialize_audio_analyzer()

        if callback:
            callback(bool(self.controllers) and all(results))

    def apply_initial_state(self):
        for controller, saved in zip(self.controllers, self.initial_state.controllers):
            if saved is not None:
                controller.handle_manual_message(saved.to_wire())

        enabled = [p.to_wire() for p in self.initial_state.profiles if p.enabled]
        if enabled:
            self.handle_profile_request(enabled)

    def initialize_audio_analyzer(self):
        if not self.audio_analyzer.initialize():
            logger.warning("Audio reactivity disabled for %s", self.device)
            return False
        self._apply_audio_configuration()
        return True

    def _apply_audio_configuration(self):
        self.audio_analyzer.apply_configuration(
            fast_alpha=self.audio_config.fast_alpha,
            slow_alpha=self.audio_config.slow_alpha,
            weights=self.audio_config.weights,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    @property
    def audio_playing(self):
        return bool(self.audio_analyzer and self.audio_analyzer.is_playing)

    def update(self, delta_time):
        self.clock += delta_time

        if self.audio_reactivity_enabled and self.audio_analyzer:
            self.update_audio(delta_time)

        if self.direct_control is not None:
            idle_for = self.clock - self.last_user_action_time
            if idle_for > self.inactivity_threshold:
                logger.info("%s idle for %.0fs, releasing %s control",
                            self.device, idle_for, self.direct_control.value)
                self.passive.state.active = False
                self._set_direct_control(None)

        if self.direct_control is None:
            self.passive.update(delta_time)

        for controller in self.controllers:
            controller.update(delta_time)

    def _set_direct_control(self, source):
        changed = source is not self.direct_control
        self.direct_control = source
        if changed:
            self.publish_status()

    def _take_direct_control(self, source):
        self.last_user_action_time = self.clock
        if self.passive.active:
            self.passive.cleanup()
        self._set_direct_control(source)

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def update_audio(self, delta_time=0.0):
        magnitudes = self.audio_analyzer.update(delta_time)
        if magnitudes is None:
            return False
        if not self.generate_pulse(magnitudes):
            return False
        self._take_direct_control(ControlSource.AUDIO)
        self.dispatch_audio_messages()
        return True

    def generate_pulse(self, magnitudes):
        for i in range(len(self.audio_messages)):
            self.audio_messages[i] = self._blank_audio_message(i)
        self.update_frequency_magnitudes(magnitudes)

        # Only "fixed" is implemented; other modes fall back to it
        self.pulse_ready = self.generate_fixed_pulse()
        return self.pulse_ready

    def update_frequency_magnitudes(self, magnitudes):
        """Collapse each band's five weighted bins to its peak value."""
        values = list(magnitudes)
        low = values[:BINS_PER_BAND]
        mid = values[BINS_PER_BAND:2 * BINS_PER_BAND]
        high = values[2 * BINS_PER_BAND:3 * BINS_PER_BAND]
        self.prevailing_low = max(low + [0.0])
        self.prevailing_mid = max(mid + [0.0])
        self.prevailing_high = max(high + [0.0])

    def band_magnitude(self, frequency_flag):
        if frequency_flag == FREQ_LOW:
            return self.prevailing_low
        if frequency_flag == FREQ_MID:
            return self.prevailing_mid
        if frequency_flag == FREQ_HIGH:
            return self.prevailing_high
        return 0.0

    def is_above_threshold(self, frequency_flag):
        thresholds = self.audio_config.thresholds
        for band in BAND_FLAGS:
            if frequency_flag & band:
                if self.band_magnitude(band) > thresholds[threshold_index(band)]:
                    return True
        return False

    def generate_fixed_pulse(self):
        """Mark every (controller, supply) whose band is above threshold.

        Results land in ``self.audio_messages``; returns True when any
        controller has at least one active supply.
        """
        any_active = False
        flags_by_controller = self.audio_config.supply_flags

        for idx, controller in enumerate(self.controllers):
            if idx >= len(flags_by_controller) or idx >= len(self.audio_messages):
                continue
            flags = flags_by_controller[idx]
            message = self.audio_messages[idx]
            message["frequencyFlag"] = FREQ_NONE
            message["audioSupplyFlags"] = [FREQ_NONE] * len(controller.supplies)

            controller_active = False
            for supply_idx in range(len(controller.supplies)):
                if supply_idx >= len(flags):
                    continue
                flag = flags[supply_idx]
                if flag != FREQ_NONE and self.is_above_threshold(flag):
                    message["audioSupplyFlags"][supply_idx] = flag
                    message["frequencyFlag"] |= flag
                    controller_active = True

            if controller_active:
                message["controllerIndex"] = idx
                message["weightedLowMagnitude"] = self.prevailing_low
                message["weightedMidMagnitude"] = self.prevailing_mid
                message["weightedHighMagnitude"] = self.prevailing_high
                any_active = True

        return any_active

    def dispatch_audio_messages(self):
        for idx, controller in enumerate(self.controllers):
            if idx >= len(self.audio_messages):
                break
            message = self.audio_messages[idx]
            if message["frequencyFlag"] == FREQ_NONE:
                continue
            controller.handle_audio_message({"audio": [dict(message)]})

    def play_audio(self):
        if self.audio_analyzer.play():
            self._take_direct_control(ControlSource.AUDIO)
            return True
        return False

    def pause_audio(self):
        return self.audio_analyzer.pause()

    def stop_audio(self):
        return self.audio_analyzer.stop()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def send_profile_to_controller(self, index, profile, source=ControlSource.PROFILE):
        if 0 <= index < len(self.controllers):
            self.controllers[index].handle_profile_message(profile, source=source)
            return True
        logger.warning("%s: ignoring profile for controller %s", self.device, index)
        return False

    def set_distance(self, index, distance):
        if 0 <= index < len(self.controllers):
            self.controllers[index].set_distance(distance)
            return True
        logger.warning("%s: ignoring distance for controller %s", self.device, index)
        return False

    def set_passive_mode_enabled(self, enabled):
        self.passive.set_enabled(enabled)

    def cleanup_passive_mode(self):
        self.passive.cleanup()

    def handle_audio_config_request(self, audio_config):
        if not isinstance(audio_config, dict):
            return
        self.audio_config = AudioConfig.from_dict(audio_config, self.audio_config)
        self._apply_audio_configuration()
        self.publish(f"{self.device}/audio_config", self.audio_config.to_wire())

    def handle_manual_request(self, request, index=0):
        if not 0 <= index < len(self.controllers):
            logger.warning("%s: ignoring manual request for controller %s",
                           self.device, index)
            return False
        self._take_direct_control(ControlSource.MANUAL)
        message = dict(request) if isinstance(request, dict) else {}
        self.controllers[index].handle_manual_message(message)
        self.publish(f"{self.device}/manual/{index}", message)
        return True

    def handle_profile_request(self, request, from_passive=False):
        """Start or stop profiles.

        ``request`` is either ``{"stopProfile": true}``, a single profile
        dict, or a list of per-controller profile dicts. For lists, the
        ``phaseOffset`` of the first element spreads phases across the
        enabled controllers.
        """
        source = ControlSource.PASSIVE if from_passive else ControlSource.PROFILE
        if not from_passive:
            self._take_direct_control(ControlSource.PROFILE)

        if isinstance(request, dict):
            if request.get("stopProfile") is True:
                for idx in range(len(self.controllers)):
                    self.send_profile_to_controller(
                        idx, ProfileRequest(stop_profile=True), source)
                if not from_passive:
                    self.publish(f"{self.device}/profile", {"stopProfile": True})
                return
            request = [request]

        if not isinstance(request, list) or not request:
            return

        entries = [ProfileRequest.from_dict(raw, index=i) for i, raw in enumerate(request)]
        enabled = [p for p in entries if p.enabled]
        phase_offset = entries[0].phase_offset
        active_count = min(len(enabled), len(self.controllers))

        for profile in enabled:
            idx = profile.index
            if not 0 <= idx < len(self.controllers):
                logger.warning("%s: ignoring profile for controller %s", self.device, idx)
                continue
            spread = (idx / active_count) * phase_offset
            profile.phase = (profile.phase + spread) % 1.0
            self.send_profile_to_controller(idx, profile, source)

        if not from_passive:
            self.publish(f"{self.device}/profile", [p.to_wire() for p in entries])

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def publish(self, topic, payload):
        if self._publish is None:
            return False
        return self._publish(topic, payload)

    def publish_status(self):
        return self.publish(f"{self.device}/manager/status", self.status())

    def status(self):
        return {
            "directControl": self.direct_control.value if self.direct_control else None,
            "passive": self.passive.state.to_dict(),
            "audioPlaying": self.audio_playing,
        }

    def to_dict(self):
        state = self.status()
        state.update({
            "device": self.device,
            "controllers": [c.to_dict() for c in self.controllers],
            "audioConfig": self.audio_config.to_wire(),
            "bands": {
                "low": self.prevailing_low,
                "mid": self.prevailing_mid,
                "high": self.prevailing_high,
            },
        })
        return state
