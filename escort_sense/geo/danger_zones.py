"""
Danger zone monitoring on top of the DBSCAN engine
Keeps the incident log, caches the latest cluster set and answers
"am I in a danger zone" / heatmap queries for map overlays
"""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path

from ..config import (
    CLUSTER_CACHE_TTL_S, MAX_LOGGED_EVENTS, DANGER_RISK_THRESHOLD,
    HEATMAP_GRID_SIZE, DEFAULT_HEATMAP_BOUNDS, HEATMAP_MEMBER_WEIGHT,
    HEATMAP_MEMBER_RADIUS_M, DEFAULT_SEVERITY, MAX_SEVERITY
)
from .dbscan import GeoClusterEngine, GeoEvent, validate_coordinates

logger = logging.getLogger(__name__)


class ClusterCache:
    """
    Last computed value plus the time it was computed.
    Stale after ttl_s seconds or once invalidated.
    """

    def __init__(self, ttl_s=CLUSTER_CACHE_TTL_S, clock=time.time):
        self.ttl_s = ttl_s
        self.clock = clock
        self.value = None
        self.computed_at = None

    def is_fresh(self):
        if self.computed_at is None:
            return False
        return (self.clock() - self.computed_at) < self.ttl_s

    def get(self):
        """Cached value, or None when stale."""
        return self.value if self.is_fresh() else None

    def put(self, value):
        self.value = value
        self.computed_at = self.clock()
        return value

    def invalidate(self):
        self.computed_at = None


class EventLog:
    """
    Append-only incident log with bounded retention (oldest dropped first).
    """

    def __init__(self, max_events=MAX_LOGGED_EVENTS, events=()):
        self.max_events = max_events
        self._events = deque(events, maxlen=max_events)
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._events)

    def append(self, event):
        with self._lock:
            self._events.append(event)

    def snapshot(self):
        with self._lock:
            return tuple(self._events)

    def save(self, path):
        """
        Write the log as a JSON list of {lat, lng, timestamp, eventType, severity}
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        records = [event.to_dict() for event in self.snapshot()]
        with open(path, "w", encoding="utf-8") as f:
            json.dump(records, f)
        logger.info(f"Saved {len(records)} danger events to {path}")

    @classmethod
    def load(cls, path, max_events=MAX_LOGGED_EVENTS):
        """
        Read a log written by save(); a missing file gives an empty log.
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"No event log found at {path}")
            return cls(max_events=max_events)

        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)

        events = [GeoEvent.from_dict(record) for record in records]
        logger.info(f"Loaded {len(events)} danger events from {path}")
        return cls(max_events=max_events, events=events)


@dataclass(frozen=True)
class HeatmapPoint:
    """Weighted point for a map heatmap overlay."""
    lat: float
    lng: float
    weight: float
    radius: float


class DangerZoneMonitor:
    """
    Stores incident reports and analyzes them into danger zones.

    Reclustering is O(n^2), so results are cached for a few minutes and
    recomputed on demand; reporting a new event invalidates the cache.
    Reclustering runs under a lock; readers get an immutable tuple.
    """

    def __init__(self, engine=None, log=None, cache=None, clock=time.time):
        self.engine = engine or GeoClusterEngine(clock=clock)
        self.log = log if log is not None else EventLog()
        self.cache = cache or ClusterCache(clock=clock)
        self.clock = clock
        self._lock = threading.Lock()

    def report_event(self, lat, lng, event_type, severity=DEFAULT_SEVERITY, timestamp=None):
        """
        Record a danger event at a location.

        Args:
            lat, lng: location of the incident
            event_type: SOS, FALL, VOICE, MANUAL, ...
            severity: clamped to 1-5
            timestamp: epoch ms (defaults to now)

        Returns:
            the stored GeoEvent
        """
        validate_coordinates(lat, lng)
        event = GeoEvent(
            latitude=lat,
            longitude=lng,
            timestamp=int(self.clock() * 1000) if timestamp is None else int(timestamp),
            event_type=event_type,
            severity=min(max(int(severity), 1), MAX_SEVERITY),
        )
        self.log.append(event)

        with self._lock:
            self.cache.invalidate()

        logger.info(f"Danger event reported: {event_type} at ({lat}, {lng})")
        return event

    def danger_clusters(self, force_refresh=False):
        """
        Danger clusters sorted by risk score.

        Args:
            force_refresh: recompute even if the cache is still fresh
        """
        with self._lock:
            cached = self.cache.get()
            if not force_refresh and cached is not None:
                return cached

            events = self.log.snapshot()
            clusters = tuple(self.engine.cluster(events))
            self.cache.put(clusters)

        logger.info(f"Computed {len(clusters)} danger clusters from {len(events)} events")
        return clusters

    def risk_level(self, lat, lng):
        """Risk level 0.0 (safe) to 1.0 (high danger)"""
        return self.engine.risk_level(lat, lng, self.danger_clusters())

    def check_danger_zone(self, lat, lng, threshold=DANGER_RISK_THRESHOLD):
        """
        Whether a location is in a danger zone.

        Returns:
            (is_in_danger_zone, nearest cluster or None)
        """
        clusters = self.danger_clusters()

        nearest_cluster = None
        min_distance = float("inf")
        for cluster in clusters:
            distance = cluster.distance_to(lat, lng)
            if distance < min_distance:
                min_distance = distance
                nearest_cluster = cluster

        risk = self.engine.risk_level(lat, lng, clusters)
        return risk >= threshold, nearest_cluster

    def heatmap(self, grid_size=HEATMAP_GRID_SIZE, bounds=DEFAULT_HEATMAP_BOUNDS):
        """Risk raster [lat][lng] in [0, 1]"""
        return self.engine.heatmap_grid(self.danger_clusters(), grid_size, bounds)

    def heatmap_points(self):
        """
        Weighted points for a map overlay: one per cluster centre and one,
        at half weight, per incident in the cluster.
        """
        points = []
        for cluster in self.danger_clusters():
            points.append(HeatmapPoint(
                lat=cluster.centroid[0],
                lng=cluster.centroid[1],
                weight=cluster.risk_score,
                radius=cluster.radius_m,
            ))
            for event in cluster.members:
                points.append(HeatmapPoint(
                    lat=event.latitude,
                    lng=event.longitude,
                    weight=cluster.risk_score * HEATMAP_MEMBER_WEIGHT,
                    radius=HEATMAP_MEMBER_RADIUS_M,
                ))
        return points
