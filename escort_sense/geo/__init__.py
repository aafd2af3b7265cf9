from .dbscan import (
    GeoEvent, DangerCluster, GeoClusterEngine, RegionQuery, LinearRegionQuery, NOISE
)
from .danger_zones import ClusterCache, EventLog, HeatmapPoint, DangerZoneMonitor
