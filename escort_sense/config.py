"""
Configuration constants for the escort_sense on-device safety analytics core
"""

# Audio Configuration
SAMPLE_RATE = 16000  # 16 kHz mono PCM

# Feature Extraction
N_FFT = 512  # DFT window size
HOP_LENGTH = 256  # Stride between frames
N_MELS = 40  # Number of mel filter banks
F_MIN = 0.0  # Lowest filter edge (Hz)
F_MAX = 8000.0  # Highest filter edge (Hz), Nyquist at 16 kHz
LOG_FLOOR = 1e-10  # Avoids log10(0)
DFT_METHOD = "direct"  # "direct" (explicit summation) or "fft"

# Fall Detection - Signal Vector Magnitude (m/s^2)
GRAVITY = 9.81
FREE_FALL_THRESHOLD = 3.0  # Near weightlessness
IMPACT_THRESHOLD = 20.0  # High-G impact
STILLNESS_VARIANCE_THRESHOLD = 2.0  # Max variance while lying still
GRAVITY_TOLERANCE = 3.0  # |smoothed - g| allowed while still

# Fall Detection - Timing (seconds)
MIN_FREE_FALL_DURATION = 0.08
MAX_FREE_FALL_DURATION = 0.6
IMPACT_WINDOW = 0.5  # Time to see the impact after free-fall ends
STILLNESS_DURATION = 1.5  # Time to confirm stillness after impact

# Fall Detection - Filtering
SMOOTHING_FACTOR = 0.2  # EMA alpha
MAGNITUDE_BUFFER_SIZE = 50  # Samples kept for variance

# Fall Detection - Confidence blend
IMPACT_REFERENCE = 30.0  # Peak that earns full impact score
CONFIDENCE_WEIGHTS = (0.4, 0.3, 0.3)  # impact, stillness, duration
CONFIDENCE_FLOOR = 0.5

# Danger Zone Clustering (DBSCAN)
CLUSTER_EPS = 0.0005  # Degrees, ~50 m
CLUSTER_MIN_POINTS = 3  # Minimum incidents to form a zone
METERS_PER_DEGREE = 111000.0
EARTH_RADIUS_M = 6371000.0
MIN_CLUSTER_RADIUS_M = 50.0
CONTAINMENT_BUFFER = 1.2  # 20% margin for DangerCluster.contains()

# Risk Scoring
RISK_WEIGHTS = (0.4, 0.3, 0.3)  # recency, severity, density
RECENCY_DECAY_DAYS = 30.0
MAX_SEVERITY = 5
DENSITY_SATURATION = 10  # Members for full density score
DEFAULT_SEVERITY = 3

# Danger Zone Monitoring
CLUSTER_CACHE_TTL_S = 300  # 5 minute staleness window
MAX_LOGGED_EVENTS = 1000  # Event log retention
DANGER_RISK_THRESHOLD = 0.3
HEATMAP_GRID_SIZE = 50
HEATMAP_MEMBER_WEIGHT = 0.5
HEATMAP_MEMBER_RADIUS_M = 30.0
# Pasig City bounds: min_lat, max_lat, min_lng, max_lng
DEFAULT_HEATMAP_BOUNDS = (14.52, 14.62, 121.05, 121.12)

# Distress Classifier
MODEL_PATH = "models/soundclassifier.tflite"
LABELS_PATH = "models/labels.txt"
CLASS_LABELS = (
    "background",  # 0
    "saklolo",     # 1
    "tulong",      # 2
)
DISTRESS_LABELS = ("saklolo", "tulong")
DISTRESS_THRESHOLD = 0.70  # Minimum confidence for distress
PCM_SCALE = 32768.0  # int16 -> [-1, 1]
