from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from reit_common.normalize import normalize_label, resolve_field
from reit_common.schema import CLUSTER_COORDINATES

LOGGER = logging.getLogger(__name__)

CLUSTER_FIELD = "CONJUNTO"


@dataclass(frozen=True)
class HeatmapPoint:
    cluster: str
    lat: float
    lon: float
    intensity: int


@dataclass
class HeatmapResult:
    points: List[HeatmapPoint] = field(default_factory=list)
    missing: List[Tuple[str, int]] = field(default_factory=list)


def cluster_index(
    coordinates: Mapping[str, Tuple[float, float]] = CLUSTER_COORDINATES,
    extra: Optional[Mapping[str, Tuple[float, float]]] = None,
) -> Dict[str, Tuple[float, float]]:
    """Loose-normalized cluster name -> (lat, lon); ``extra`` wins on collisions."""

    index = {normalize_label(name): (float(lat), float(lon)) for name, (lat, lon) in coordinates.items()}
    for name, (lat, lon) in (extra or {}).items():
        index[normalize_label(name)] = (float(lat), float(lon))
    return index


def aggregate_heatmap(
    rows: Iterable[Mapping[str, Any]],
    index: Optional[Mapping[str, Tuple[float, float]]] = None,
) -> HeatmapResult:
    """Count incidents per CONJUNTO and place each cluster on its coordinate."""

    if index is None:
        index = cluster_index()

    counts: Dict[str, int] = {}
    for row in rows:
        cluster = normalize_label(resolve_field(row, CLUSTER_FIELD))
        if not cluster:
            continue
        counts[cluster] = counts.get(cluster, 0) + 1

    result = HeatmapResult()
    for cluster, count in counts.items():
        coords = index.get(cluster)
        if coords is None:
            result.missing.append((cluster, count))
            continue
        result.points.append(HeatmapPoint(cluster, coords[0], coords[1], count))

    if counts and not result.points:
        LOGGER.warning("No heatmap point generated. Sample clusters: %s", list(counts)[:25])
    if result.missing:
        top = sorted(result.missing, key=lambda item: -item[1])[:15]
        LOGGER.warning("Clusters without coordinates (top %d): %s", len(top), top)
    return result


__all__ = ["CLUSTER_FIELD", "HeatmapPoint", "HeatmapResult", "aggregate_heatmap", "cluster_index"]
