"""
DBSCAN - Density-Based Spatial Clustering of Applications with Noise

Groups geotagged safety incidents (SOS triggers, falls, distress audio) into
danger zones:
1. Identify clusters of repeated incidents using haversine distance
2. Score each zone by recency, severity and density
3. Answer point risk queries and build heatmap rasters
Isolated incidents are left as noise and never form a zone.
"""

import logging
import math
import time
from dataclasses import dataclass

import numpy as np

from ..config import (
    CLUSTER_EPS, CLUSTER_MIN_POINTS, METERS_PER_DEGREE, MIN_CLUSTER_RADIUS_M,
    CONTAINMENT_BUFFER, RISK_WEIGHTS, RECENCY_DECAY_DAYS, MAX_SEVERITY,
    DENSITY_SATURATION, DEFAULT_SEVERITY, HEATMAP_GRID_SIZE, DEFAULT_HEATMAP_BOUNDS
)
from ..exceptions import InvalidInput
from ..primitives import haversine_m

logger = logging.getLogger(__name__)

# Cluster labels
NOISE = -1
UNCLASSIFIED = 0

MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class GeoEvent:
    """A safety incident with a known location."""
    latitude: float
    longitude: float
    timestamp: int  # epoch milliseconds
    event_type: str = ""  # e.g. "SOS", "FALL", "VOICE", "MANUAL"
    severity: int = DEFAULT_SEVERITY  # 1-5

    def to_dict(self):
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "timestamp": self.timestamp,
            "eventType": self.event_type,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, record):
        return cls(
            latitude=float(record.get("lat", 0.0)),
            longitude=float(record.get("lng", 0.0)),
            timestamp=int(record.get("timestamp", 0)),
            event_type=str(record.get("eventType", "")),
            severity=int(record.get("severity", DEFAULT_SEVERITY)),
        )


@dataclass(frozen=True)
class DangerCluster:
    """A danger zone derived from one clustering run."""
    id: int
    members: tuple
    centroid: tuple  # (lat, lng)
    radius_m: float
    risk_score: float  # 0.0 - 1.0

    @property
    def point_count(self):
        return len(self.members)

    def distance_to(self, lat, lng):
        return float(haversine_m(self.centroid[0], self.centroid[1], lat, lng))

    def contains(self, lat, lng):
        """True if the point falls inside the zone (with a 20% buffer)."""
        return self.distance_to(lat, lng) <= self.radius_m * CONTAINMENT_BUFFER


class RegionQuery:
    """
    Neighbourhood lookup used by DBSCAN.
    Subclasses can back this with a spatial index without changing clustering.
    """

    def __init__(self, latitudes, longitudes, eps_m):
        self.latitudes = latitudes
        self.longitudes = longitudes
        self.eps_m = eps_m

    def neighbors(self, index):
        raise NotImplementedError


class LinearRegionQuery(RegionQuery):
    """O(n) scan per query; fine for event logs of a few thousand points."""

    def neighbors(self, index):
        distances = haversine_m(self.latitudes[index], self.longitudes[index],
                                self.latitudes, self.longitudes)
        return np.flatnonzero(distances <= self.eps_m).tolist()


def validate_coordinates(lat, lng):
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidInput(f"Non-finite coordinates: ({lat}, {lng})")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise InvalidInput(f"Coordinates out of range: ({lat}, {lng})")


class GeoClusterEngine:
    """
    DBSCAN over geographic points using haversine distance.

    Args:
        eps: neighbourhood radius in degrees (converted with eps * 111000 m)
        min_points: neighbours (including the point itself) needed for a core point
        min_radius_m: floor for the synthesized zone radius
        clock: returns epoch seconds, used for recency scoring
        region_query: RegionQuery subclass used for neighbourhood lookups
    """

    def __init__(self, eps=CLUSTER_EPS, min_points=CLUSTER_MIN_POINTS,
                 min_radius_m=MIN_CLUSTER_RADIUS_M, clock=time.time,
                 region_query=LinearRegionQuery):
        if not (math.isfinite(eps) and eps > 0):
            raise InvalidInput(f"eps must be a positive number, got {eps}")
        if min_points < 1:
            raise InvalidInput(f"min_points must be >= 1, got {min_points}")

        self.eps = eps
        self.min_points = min_points
        self.min_radius_m = min_radius_m
        self.clock = clock
        self.region_query = region_query

    @property
    def eps_m(self):
        return self.eps * METERS_PER_DEGREE

    def cluster(self, events, now_ms=None):
        """
        Run DBSCAN clustering on a snapshot of danger events.

        Args:
            events: sequence of GeoEvent
            now_ms: reference time for recency scoring (epoch ms)

        Returns:
            list of DangerCluster sorted by descending risk score
        """
        events = list(events)
        if not events:
            return []
        self._validate_events(events)

        if now_ms is None:
            now_ms = int(self.clock() * 1000)

        labels = self._label(events)

        members = {}
        for event, label in zip(events, labels):
            if label > 0:
                members.setdefault(label, []).append(event)

        clusters = [self._create_danger_cluster(cluster_id, points, now_ms)
                    for cluster_id, points in members.items()]
        clusters.sort(key=lambda c: c.risk_score, reverse=True)

        logger.debug(f"Clustered {len(events)} events into {len(clusters)} danger zones "
                     f"({labels.count(NOISE)} noise)")
        return clusters

    def risk_level(self, lat, lng, clusters):
        """
        Risk at a location: 0.0 = safe, 1.0 = high danger.

        Full cluster score inside its radius, linear falloff out to twice
        the radius, nothing beyond that.
        """
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise InvalidInput(f"Non-finite coordinates: ({lat}, {lng})")

        max_risk = 0.0
        for cluster in clusters:
            distance = cluster.distance_to(lat, lng)
            radius = cluster.radius_m

            if distance <= radius:
                max_risk = max(max_risk, cluster.risk_score)
            elif distance <= radius * 2:
                falloff = 1.0 - (distance - radius) / radius
                max_risk = max(max_risk, cluster.risk_score * falloff)

        return max_risk

    def heatmap_grid(self, clusters, grid_size=HEATMAP_GRID_SIZE, bounds=DEFAULT_HEATMAP_BOUNDS):
        """
        Risk values on a regular lat/lng grid.

        Args:
            clusters: previously computed clusters
            grid_size: grid points per dimension
            bounds: (min_lat, max_lat, min_lng, max_lng)

        Returns:
            float32 array [lat][lng] of shape (grid_size, grid_size)
        """
        if grid_size < 1:
            raise InvalidInput(f"grid_size must be >= 1, got {grid_size}")
        min_lat, max_lat, min_lng, max_lng = bounds
        if not all(math.isfinite(b) for b in bounds):
            raise InvalidInput(f"Non-finite heatmap bounds: {bounds}")
        if min_lat > max_lat or min_lng > max_lng:
            raise InvalidInput(f"Inverted heatmap bounds: {bounds}")

        lat_step = (max_lat - min_lat) / grid_size
        lng_step = (max_lng - min_lng) / grid_size

        grid = np.zeros((grid_size, grid_size), dtype=np.float32)
        for i in range(grid_size):
            lat = min_lat + i * lat_step
            for j in range(grid_size):
                grid[i, j] = self.risk_level(lat, min_lng + j * lng_step, clusters)
        return grid

    def _validate_events(self, events):
        for event in events:
            validate_coordinates(event.latitude, event.longitude)
            if not 1 <= event.severity <= MAX_SEVERITY:
                raise InvalidInput(f"Severity must be in 1..{MAX_SEVERITY}, got {event.severity}")

    def _label(self, events):
        """
        Assign a cluster id (1-based), or NOISE, to every event.
        """
        latitudes = np.array([e.latitude for e in events], dtype=np.float64)
        longitudes = np.array([e.longitude for e in events], dtype=np.float64)
        query = self.region_query(latitudes, longitudes, self.eps_m)

        labels = [UNCLASSIFIED] * len(events)
        visited = [False] * len(events)
        current_cluster_id = 0

        for index in range(len(events)):
            if visited[index]:
                continue
            visited[index] = True

            neighbors = query.neighbors(index)
            if len(neighbors) < self.min_points:
                labels[index] = NOISE
                continue

            current_cluster_id += 1
            self._expand_cluster(query, index, neighbors, current_cluster_id, labels, visited)

        return labels

    def _expand_cluster(self, query, index, neighbors, cluster_id, labels, visited):
        """
        Breadth-first absorption of all density-reachable points.
        Noise points reached here become border points of this cluster.
        """
        labels[index] = cluster_id
        queue = list(neighbors)
        queued = set(queue)

        i = 0
        while i < len(queue):
            neighbor = queue[i]
            i += 1

            if not visited[neighbor]:
                visited[neighbor] = True
                neighbor_neighbors = query.neighbors(neighbor)
                if len(neighbor_neighbors) >= self.min_points:
                    for nn in neighbor_neighbors:
                        if nn not in queued:
                            queued.add(nn)
                            queue.append(nn)

            if labels[neighbor] in (UNCLASSIFIED, NOISE):
                labels[neighbor] = cluster_id

    def _create_danger_cluster(self, cluster_id, points, now_ms):
        """
        Centroid, radius and risk score for one cluster.
        Border points count towards the risk score like core points.
        """
        lats = np.array([p.latitude for p in points], dtype=np.float64)
        lngs = np.array([p.longitude for p in points], dtype=np.float64)
        avg_lat = float(lats.mean())
        avg_lng = float(lngs.mean())

        radius = float(np.max(haversine_m(avg_lat, avg_lng, lats, lngs)))

        return DangerCluster(
            id=cluster_id,
            members=tuple(points),
            centroid=(avg_lat, avg_lng),
            radius_m=max(radius, self.min_radius_m),
            risk_score=risk_score(points, now_ms),
        )


def risk_score(points, now_ms):
    """
    Weighted blend of recency, severity and density in [0, 1].
    Recency decays exponentially with a 30 day constant; future
    timestamps count as brand new.
    """
    w_recency, w_severity, w_density = RISK_WEIGHTS

    ages_days = np.maximum(
        (now_ms - np.array([p.timestamp for p in points], dtype=np.float64)) / MS_PER_DAY, 0.0
    )
    recency = float(np.mean(np.exp(-ages_days / RECENCY_DECAY_DAYS)))
    severity = float(np.mean([p.severity for p in points])) / MAX_SEVERITY
    density = min(len(points) / DENSITY_SATURATION, 1.0)

    score = recency * w_recency + severity * w_severity + density * w_density
    return min(max(score, 0.0), 1.0)
