"""Tests for the accelerometer FallDetector state machine."""

import math

import pytest

from escort_sense.motion.fall_detector import (
    FallDetector, FallDetectionConfig, FallPhase
)

DT = 0.01  # 100 Hz sensor


def feed(detector, magnitude, start, duration, dt=DT):
    """
    Feed samples of the given magnitude (on the z axis) for `duration`
    seconds starting at `start`. Returns (results, next timestamp).
    """
    results = []
    count = int(round(duration / dt))
    for i in range(count):
        results.append(detector.analyze(0.0, 0.0, magnitude, timestamp=start + i * dt))
    return results, start + count * dt


def simulate_fall(detector, stillness=3.0):
    """Free fall for 200ms, one impact sample, then lying still."""
    results, t = feed(detector, 0.0, 0.0, 0.21)
    results.append(detector.analyze(0.0, 0.0, 30.0, timestamp=t))
    still, t = feed(detector, 9.8, t + DT, stillness)
    return results + still


class TestFallDetector:
    """Test cases for FallDetector."""

    def test_initial_state(self):
        detector = FallDetector()
        assert detector.phase is FallPhase.IDLE
        assert not detector.is_fall_confirmed()
        assert detector.state.smoothed_magnitude == pytest.approx(9.81)

    def test_normal_motion_stays_idle(self):
        detector = FallDetector()
        results, _ = feed(detector, 9.81, 0.0, 1.0)
        assert all(r.phase is FallPhase.IDLE for r in results)
        assert results[-1].raw_magnitude == pytest.approx(9.81)
        assert results[-1].variance == pytest.approx(0.0, abs=1e-9)

    def test_magnitude_and_smoothing(self):
        detector = FallDetector()
        result = detector.analyze(3.0, 4.0, 12.0, timestamp=0.0)
        assert result.raw_magnitude == pytest.approx(13.0)
        assert result.smoothed_magnitude == pytest.approx(9.81 * 0.8 + 13.0 * 0.2)
        assert result.variance == 0.0

    def test_fall_happy_path(self):
        detector = FallDetector()
        results = simulate_fall(detector)

        phases = [r.phase for r in results]
        assert FallPhase.FREE_FALL in phases
        assert FallPhase.IMPACT_DETECTION in phases
        assert FallPhase.POST_IMPACT in phases
        assert detector.phase is FallPhase.FALL_CONFIRMED
        assert detector.is_fall_confirmed()

        confirming = next(r for r in results if r.is_fall_confirmed)
        assert 0.5 <= confirming.confidence <= 1.0
        assert "FALL CONFIRMED" in confirming.note

    def test_phases_are_never_skipped(self):
        detector = FallDetector()
        results = simulate_fall(detector)

        order = []
        for r in results:
            if not order or order[-1] is not r.phase:
                order.append(r.phase)
        assert order == [
            FallPhase.FREE_FALL,
            FallPhase.IMPACT_DETECTION,
            FallPhase.POST_IMPACT,
            FallPhase.FALL_CONFIRMED,
        ]

    def test_confirmed_is_terminal_until_reset(self):
        detector = FallDetector()
        simulate_fall(detector)

        result = detector.analyze(20.0, 20.0, 20.0, timestamp=10.0)
        assert result.phase is FallPhase.FALL_CONFIRMED
        assert result.is_fall_confirmed
        assert result.confidence == 1.0

    def test_free_fall_timeout_never_reaches_impact(self):
        detector = FallDetector()
        results, t = feed(detector, 0.0, 0.0, 0.7)
        assert any(r.note == "Free-fall timeout" for r in results)

        after, t = feed(detector, 9.8, t, 0.2)
        impact = detector.analyze(0.0, 0.0, 30.0, timestamp=t)
        tail, _ = feed(detector, 9.8, t + DT, 2.0)

        phases = {r.phase for r in results + after + [impact] + tail}
        assert FallPhase.IMPACT_DETECTION not in phases
        assert detector.phase is FallPhase.IDLE

    def test_free_fall_too_short(self):
        detector = FallDetector()
        _, t = feed(detector, 0.0, 0.0, 0.05)
        result = detector.analyze(0.0, 0.0, 9.8, timestamp=t)
        assert result.phase is FallPhase.IDLE
        assert "too short" in result.note

    def test_no_impact_within_window(self):
        detector = FallDetector()
        _, t = feed(detector, 0.0, 0.0, 0.2)
        results, _ = feed(detector, 12.0, t, 0.7)
        assert results[0].phase is FallPhase.IMPACT_DETECTION
        assert any(r.note == "No impact detected within window" for r in results)
        assert detector.phase is FallPhase.IDLE

    def test_movement_after_impact_is_false_alarm(self):
        detector = FallDetector()
        _, t = feed(detector, 0.0, 0.0, 0.21)
        detector.analyze(0.0, 0.0, 30.0, timestamp=t)
        t += DT

        results = []
        for i in range(400):
            magnitude = 4.0 if i % 2 else 16.0
            results.append(detector.analyze(0.0, 0.0, magnitude, timestamp=t + i * DT))

        assert not any(r.is_fall_confirmed for r in results)
        assert any(r.note == "Movement detected, resetting" for r in results)
        assert detector.phase is FallPhase.IDLE

    def test_determinism(self):
        first, second = FallDetector(), FallDetector()
        assert [r.phase for r in simulate_fall(first)] == [r.phase for r in simulate_fall(second)]
        assert first.state == second.state

    def test_reset_idempotence(self):
        detector = FallDetector()
        simulate_fall(detector)
        assert detector.is_fall_confirmed()

        detector.reset()
        once = detector.state
        detector.reset()
        twice = detector.state

        assert once == twice
        assert twice == FallDetector().state
        assert detector.phase is FallPhase.IDLE
        assert len(twice.recent_magnitudes) == 0

    def test_detects_again_after_reset(self):
        detector = FallDetector()
        simulate_fall(detector)
        detector.reset()
        simulate_fall(detector)
        assert detector.is_fall_confirmed()

    def test_non_finite_sample_is_ignored(self):
        detector = FallDetector()
        result = detector.analyze(math.nan, 0.0, 0.0, timestamp=0.0)
        assert result.phase is FallPhase.IDLE
        assert not result.is_fall_confirmed
        assert result.note == "Ignored non-finite sample"
        assert detector.state == FallDetector().state

        detector.analyze(math.inf, 1.0, 1.0, timestamp=0.01)
        assert detector.state.smoothed_magnitude == pytest.approx(9.81)

    def test_uses_injected_clock(self, fake_clock):
        detector = FallDetector(clock=fake_clock)
        for _ in range(21):
            detector.analyze(0.0, 0.0, 0.0)
            fake_clock.advance(DT)
        detector.analyze(0.0, 0.0, 30.0)
        assert detector.phase is FallPhase.IMPACT_DETECTION

    def test_configurable_thresholds(self):
        detector = FallDetector(FallDetectionConfig(impact_threshold=40.0))
        results = simulate_fall(detector)
        assert not any(r.is_fall_confirmed for r in results)
        assert detector.phase is FallPhase.IDLE

    def enter_post_impact(self, detector):
        """Free fall then impact; returns the timestamp of the next sample."""
        _, t = feed(detector, 0.0, 0.0, 0.21)
        detector.analyze(0.0, 0.0, 30.0, timestamp=t)
        t += DT
        detector.analyze(0.0, 0.0, 9.8, timestamp=t)
        assert detector.phase is FallPhase.POST_IMPACT
        return t + DT

    def test_movement_then_short_stillness_does_not_confirm(self):
        detector = FallDetector()
        t = self.enter_post_impact(detector)

        for i in range(100):
            magnitude = 4.0 if i % 2 else 16.0
            detector.analyze(0.0, 0.0, magnitude, timestamp=t + i * DT)
        t += 100 * DT

        still_start = t
        results, _ = feed(detector, 9.81, t, 3.0)
        confirming = [(still_start + i * DT, r) for i, r in enumerate(results)
                      if r.is_fall_confirmed]

        assert confirming
        confirmed_at = confirming[0][0]
        assert confirmed_at - still_start >= 1.5

    def test_jolt_restarts_stillness(self):
        detector = FallDetector()
        t = self.enter_post_impact(detector)

        settle, t = feed(detector, 9.81, t, 1.0)
        assert not any(r.is_fall_confirmed for r in settle)
        jolt_at = t
        detector.analyze(0.0, 0.0, 25.0, timestamp=jolt_at)

        results, _ = feed(detector, 9.81, t + DT, 3.0)
        index = next(i for i, r in enumerate(results) if r.is_fall_confirmed)
        assert (t + DT + index * DT) - jolt_at >= 1.5
        assert detector.is_fall_confirmed()

    def test_continuous_stillness_confirms(self):
        detector = FallDetector()
        t = self.enter_post_impact(detector)

        results, _ = feed(detector, 9.81, t, 2.5)
        confirming = [r for r in results if r.is_fall_confirmed]

        assert confirming
        assert detector.state.still_since is None
        # peak 30 -> 1.0, variance 0 -> 1.0, 1.5 s of stillness -> floor 0.5
        assert confirming[0].confidence == pytest.approx(0.4 + 0.3 + 0.3 * 0.5, abs=0.01)
