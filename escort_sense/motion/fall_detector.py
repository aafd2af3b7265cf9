"""
Fall detection from triaxial accelerometer samples

Uses the Signal Vector Magnitude (SVM) with a multi-phase state machine:
1. FREE_FALL: low SVM (< 3 m/s^2) - weightlessness during the fall
2. IMPACT_DETECTION: high SVM peak (> 20 m/s^2) - hitting the ground
3. POST_IMPACT: return to ~gravity with low variance - lying still
A fall is only confirmed when all three happen in order within their windows.
"""

import copy
import enum
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from ..config import (
    GRAVITY, FREE_FALL_THRESHOLD, IMPACT_THRESHOLD,
    STILLNESS_VARIANCE_THRESHOLD, GRAVITY_TOLERANCE,
    MIN_FREE_FALL_DURATION, MAX_FREE_FALL_DURATION,
    IMPACT_WINDOW, STILLNESS_DURATION,
    SMOOTHING_FACTOR, MAGNITUDE_BUFFER_SIZE,
    IMPACT_REFERENCE, CONFIDENCE_WEIGHTS, CONFIDENCE_FLOOR
)
from ..primitives import signal_vector_magnitude, sample_variance

logger = logging.getLogger(__name__)


class FallPhase(enum.Enum):
    IDLE = "idle"                      # Waiting for free-fall
    FREE_FALL = "free_fall"            # Weightlessness in progress
    IMPACT_DETECTION = "impact"        # Waiting for impact after free-fall
    POST_IMPACT = "post_impact"        # Checking for stillness after impact
    FALL_CONFIRMED = "fall_confirmed"  # Terminal until reset()


@dataclass(frozen=True)
class FallDetectionConfig:
    """Tuning knobs for the fall state machine (durations in seconds)."""
    gravity: float = GRAVITY
    free_fall_threshold: float = FREE_FALL_THRESHOLD
    impact_threshold: float = IMPACT_THRESHOLD
    stillness_variance: float = STILLNESS_VARIANCE_THRESHOLD
    gravity_tolerance: float = GRAVITY_TOLERANCE
    min_free_fall_duration: float = MIN_FREE_FALL_DURATION
    max_free_fall_duration: float = MAX_FREE_FALL_DURATION
    impact_window: float = IMPACT_WINDOW
    stillness_duration: float = STILLNESS_DURATION
    smoothing_factor: float = SMOOTHING_FACTOR
    buffer_size: int = MAGNITUDE_BUFFER_SIZE
    impact_reference: float = IMPACT_REFERENCE
    confidence_weights: tuple = CONFIDENCE_WEIGHTS
    confidence_floor: float = CONFIDENCE_FLOOR


@dataclass
class FallDetectorState:
    """Mutable state owned by exactly one FallDetector."""
    phase: FallPhase = FallPhase.IDLE
    phase_entered_at: float = 0.0
    smoothed_magnitude: float = GRAVITY
    recent_magnitudes: deque = field(default_factory=lambda: deque(maxlen=MAGNITUDE_BUFFER_SIZE))
    peak_magnitude: float = 0.0
    # Start of the current unbroken run of still samples in POST_IMPACT
    still_since: Optional[float] = None
    # False after a free-fall timeout until the magnitude recovers
    free_fall_armed: bool = True

    @classmethod
    def initial(cls, config):
        return cls(
            smoothed_magnitude=config.gravity,
            recent_magnitudes=deque(maxlen=config.buffer_size),
        )


@dataclass(frozen=True)
class FallResult:
    phase: FallPhase
    raw_magnitude: float
    smoothed_magnitude: float
    variance: float
    is_fall_confirmed: bool
    confidence: float
    note: str = ""


def _clamp(value, low, high):
    return max(low, min(high, value))


class FallDetector:
    """
    Stateful fall detector, one instance per monitoring session.

    Not thread-safe: callers must serialize analyze()/reset() on an instance.
    Phase timing uses elapsed wall-clock time between samples, so pass the
    sensor timestamp (seconds) when available.
    """

    def __init__(self, config=None, clock=time.time):
        self.config = config or FallDetectionConfig()
        self._clock = clock
        self._state = FallDetectorState.initial(self.config)

    @property
    def phase(self):
        return self._state.phase

    @property
    def state(self):
        """Copy of the current state, for inspection and tests."""
        return copy.deepcopy(self._state)

    def is_fall_confirmed(self):
        return self._state.phase is FallPhase.FALL_CONFIRMED

    def reset(self):
        """
        Return to IDLE and clear all derived state.
        Call after handling a confirmed fall or to cancel detection.
        """
        self._state = FallDetectorState.initial(self.config)

    def analyze(self, x, y, z, timestamp=None):
        """
        Process one accelerometer reading (m/s^2).

        Args:
            x, y, z: accelerometer axes
            timestamp: sample time in seconds (defaults to the clock)

        Returns:
            FallResult with the phase after this sample
        """
        now = self._clock() if timestamp is None else timestamp
        state = self._state
        cfg = self.config

        raw = signal_vector_magnitude(x, y, z)
        if not math.isfinite(raw):
            return self._result(raw, sample_variance(state.recent_magnitudes),
                                note="Ignored non-finite sample")

        alpha = cfg.smoothing_factor
        state.smoothed_magnitude = state.smoothed_magnitude * (1 - alpha) + raw * alpha
        state.recent_magnitudes.append(raw)
        variance = sample_variance(state.recent_magnitudes)

        if state.phase is FallPhase.FALL_CONFIRMED:
            return self._result(raw, variance, confirmed=True, confidence=1.0)

        elapsed = now - state.phase_entered_at
        note = ""
        confidence = 0.0

        if state.phase is FallPhase.IDLE:
            if not state.free_fall_armed:
                if raw >= cfg.free_fall_threshold:
                    state.free_fall_armed = True
            elif raw < cfg.free_fall_threshold:
                self._enter(FallPhase.FREE_FALL, now)
                note = f"Free-fall started (SVM: {raw:.2f})"

        elif state.phase is FallPhase.FREE_FALL:
            if raw >= cfg.free_fall_threshold:
                if cfg.min_free_fall_duration <= elapsed <= cfg.max_free_fall_duration:
                    self._enter(FallPhase.IMPACT_DETECTION, now)
                    state.peak_magnitude = raw
                    note = f"Free-fall ended ({elapsed * 1000:.0f}ms), checking for impact"
                else:
                    self._enter(FallPhase.IDLE, now)
                    if elapsed < cfg.min_free_fall_duration:
                        note = f"Free-fall too short ({elapsed * 1000:.0f}ms)"
                    else:
                        note = f"Free-fall too long ({elapsed * 1000:.0f}ms)"
            elif elapsed > cfg.max_free_fall_duration:
                self._enter(FallPhase.IDLE, now)
                state.free_fall_armed = False
                note = "Free-fall timeout"

        elif state.phase is FallPhase.IMPACT_DETECTION:
            state.peak_magnitude = max(state.peak_magnitude, raw)
            if state.peak_magnitude >= cfg.impact_threshold:
                self._enter(FallPhase.POST_IMPACT, now)
                note = f"Impact detected (peak: {state.peak_magnitude:.2f})"
            elif elapsed > cfg.impact_window:
                self._enter(FallPhase.IDLE, now)
                note = "No impact detected within window"

        elif state.phase is FallPhase.POST_IMPACT:
            is_still = (variance < cfg.stillness_variance
                        and abs(state.smoothed_magnitude - cfg.gravity) < cfg.gravity_tolerance)
            if not is_still:
                state.still_since = None
            elif state.still_since is None:
                state.still_since = now

            still_for = 0.0 if state.still_since is None else now - state.still_since
            if is_still and still_for >= cfg.stillness_duration:
                confidence = self._confidence(state.peak_magnitude, variance, still_for)
                self._enter(FallPhase.FALL_CONFIRMED, now)
                note = f"FALL CONFIRMED! Confidence: {confidence * 100:.1f}%"
                logger.warning(f"Fall confirmed (peak {state.peak_magnitude:.2f}, "
                               f"variance {variance:.3f}, confidence {confidence:.2f})")
                return self._result(raw, variance, confirmed=True,
                                    confidence=confidence, note=note)
            # A still wearer keeps the window open until confirmation
            if not is_still and elapsed > 2 * cfg.stillness_duration:
                self._enter(FallPhase.IDLE, now)
                note = "Movement detected, resetting"

        if note:
            logger.debug(note)

        return self._result(raw, variance, confidence=confidence, note=note)

    def _enter(self, phase, now):
        self._state.phase = phase
        self._state.phase_entered_at = now
        self._state.still_since = None
        if phase is FallPhase.IDLE:
            self._state.peak_magnitude = 0.0

    def _confidence(self, peak_impact, variance, stillness_duration):
        """
        Blend of how well the sample sequence matched the fall signature:
        higher impact, lower variance and longer stillness raise confidence.
        """
        cfg = self.config
        floor = cfg.confidence_floor
        w_impact, w_still, w_duration = cfg.confidence_weights

        impact_score = _clamp(peak_impact / cfg.impact_reference, floor, 1.0)
        stillness_score = _clamp(1.0 - variance / cfg.stillness_variance, floor, 1.0)
        duration_score = _clamp(stillness_duration / (2 * cfg.stillness_duration), floor, 1.0)

        return w_impact * impact_score + w_still * stillness_score + w_duration * duration_score

    def _result(self, raw, variance, confirmed=False, confidence=0.0, note=""):
        return FallResult(
            phase=self._state.phase,
            raw_magnitude=raw,
            smoothed_magnitude=self._state.smoothed_magnitude,
            variance=variance,
            is_fall_confirmed=confirmed,
            confidence=confidence,
            note=note,
        )
