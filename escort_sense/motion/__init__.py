from .fall_detector import (
    FallDetector, FallDetectionConfig, FallDetectorState, FallPhase, FallResult
)
