"""
escort_sense - on-device sensor analytics for a personal-safety escort app

Turns raw sensor streams into discrete safety signals without a network
round-trip.

Components:
- Fall detection: free-fall -> impact -> stillness state machine over
  accelerometer magnitude
- Audio features: Hann-windowed DFT, mel filter banks and log scaling into a
  normalized spectrogram image for the distress classifier
- Danger zones: DBSCAN over haversine distance, risk scoring, point risk
  queries and heatmaps

The TFLite classifier adapter lives in escort_sense.engine.inference.
"""

from .config import *
from .exceptions import InvalidInput
from .motion import FallDetector, FallDetectionConfig, FallPhase, FallResult
from .features import MelSpectrogram
from .geo import GeoEvent, DangerCluster, GeoClusterEngine, DangerZoneMonitor

__version__ = "1.0.0"
