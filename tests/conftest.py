"""Pytest configuration and fixtures for escort_sense tests."""

import pytest
import numpy as np

from escort_sense.geo.dbscan import GeoEvent

NOW_MS = 1_700_000_000_000
DAY_MS = 24 * 60 * 60 * 1000


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start=NOW_MS / 1000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_audio_data():
    """One classifier window: a half-scale 440 Hz tone, 1 s at 16 kHz."""
    sample_rate = 16000
    t = np.arange(sample_rate) / sample_rate
    audio = (0.5 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    return audio, sample_rate


@pytest.fixture
def pasig_events():
    """Three incidents within ~50m of each other in Pasig City."""
    return [
        GeoEvent(14.5764, 121.0851, NOW_MS, "SOS", 3),
        GeoEvent(14.5766, 121.0853, NOW_MS, "FALL", 4),
        GeoEvent(14.5762, 121.0849, NOW_MS, "VOICE", 3),
    ]


def make_event(lat, lng, severity=3, age_days=0.0, event_type="SOS"):
    return GeoEvent(lat, lng, int(NOW_MS - age_days * DAY_MS), event_type, severity)
