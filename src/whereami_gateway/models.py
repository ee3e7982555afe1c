"""
Data transfer objects exchanged with the whereami backend.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .tags import Tag, normalize_tags


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class Waypoint:
    """A named position; identity is ``(name, lat, lon)``."""
    name: str
    lat: float
    lon: float
    tags: List[Tag] = field(default_factory=list)
    bookmark: Optional[bool] = None
    ele: Optional[float] = None
    time: Optional[str] = None
    desc: Optional[str] = None

    def __post_init__(self) -> None:
        self.tags = normalize_tags(self.tags)

    @property
    def identity(self) -> Tuple[str, float, float]:
        return (self.name, self.lat, self.lon)

    def with_name(self, name: str) -> "Waypoint":
        return replace(self, name=name, tags=list(self.tags))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Waypoint"]:
        """Build from backend JSON; ``None`` when the coordinates are unusable."""
        lat = _as_float(data.get("lat"))
        lon = _as_float(data.get("lon"))
        if lat is None or lon is None:
            return None
        bookmark = data.get("bookmark")
        return cls(
            name=str(data.get("name") or ""),
            lat=lat,
            lon=lon,
            tags=data.get("tags") or [],
            bookmark=bookmark if isinstance(bookmark, bool) else None,
            ele=_as_float(data.get("ele")),
            time=data.get("time") or None,
            desc=data.get("desc") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "lat": self.lat, "lon": self.lon}
        if self.tags:
            payload["tags"] = [tag.to_dict() for tag in self.tags]
        for key in ("bookmark", "ele", "time", "desc"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass
class RecentSearch:
    query: str
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None

    @classmethod
    def from_value(cls, value: Any) -> Optional["RecentSearch"]:
        if isinstance(value, str):
            return cls(query=value) if value.strip() else None
        if isinstance(value, Mapping):
            query = str(value.get("query") or "").strip()
            if not query:
                return None
            return cls(query=query, lat=_as_float(value.get("lat")), lon=_as_float(value.get("lon")))
        return None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": self.query}
        if self.lat is not None:
            payload["lat"] = self.lat
        if self.lon is not None:
            payload["lon"] = self.lon
        return payload


@dataclass
class LocationFix:
    lat: float = 0.0
    lon: float = 0.0
    accuracy_m: float = 0.0
    altitude_m: Optional[float] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocationFix":
        return cls(
            lat=_as_float(data.get("lat")) or 0.0,
            lon=_as_float(data.get("lon")) or 0.0,
            accuracy_m=_as_float(data.get("accuracy_m")) or 0.0,
            altitude_m=_as_float(data.get("altitude_m")),
            timestamp=data.get("timestamp") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"lat": self.lat, "lon": self.lon, "accuracy_m": self.accuracy_m}
        if self.altitude_m is not None:
            payload["altitude_m"] = self.altitude_m
        if self.timestamp:
            payload["timestamp"] = self.timestamp
        return payload


@dataclass
class Cluster:
    """Either a single waypoint (``kind == "waypoint"``) or an aggregated bucket."""
    kind: str
    lat: float
    lon: float
    count: int = 1
    name: Optional[str] = None
    bookmark: Optional[bool] = None

    @property
    def is_cluster(self) -> bool:
        return self.kind == "cluster"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Cluster"]:
        lat = _as_float(data.get("lat"))
        lon = _as_float(data.get("lon"))
        if lat is None or lon is None:
            return None
        try:
            count = int(data.get("count") or 1)
        except (TypeError, ValueError):
            count = 1
        bookmark = data.get("bookmark")
        return cls(
            kind=str(data.get("type") or "waypoint"),
            lat=lat,
            lon=lon,
            count=count,
            name=data.get("name"),
            bookmark=bookmark if isinstance(bookmark, bool) else None,
        )


@dataclass
class Suggestion:
    name: str
    lat: float
    lon: float
    source: str = ""
    category: Optional[str] = None
    place_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Suggestion"]:
        name = str(data.get("name") or "")
        lat = _as_float(data.get("lat"))
        lon = _as_float(data.get("lon"))
        if not name or lat is None or lon is None:
            return None
        return cls(
            name=name,
            lat=lat,
            lon=lon,
            source=str(data.get("source") or ""),
            category=data.get("class") or None,
            place_type=data.get("type") or None,
        )


OFFLINE_VERSION_INFO: Dict[str, Any] = {
    "app_version": "offline",
    "go_version": "unavailable",
    "go_os": "unavailable",
    "go_arch": "unavailable",
    "build_info": {"commit": "unknown", "build_time": "unknown"},
}

UNKNOWN_VERSION_INFO: Dict[str, Any] = {
    "app_version": "unknown",
    "go_version": "unknown",
    "go_os": "unknown",
    "go_arch": "unknown",
    "build_info": {"commit": "unknown", "build_time": "unknown"},
}


__all__ = [
    "Waypoint",
    "RecentSearch",
    "LocationFix",
    "Cluster",
    "Suggestion",
    "OFFLINE_VERSION_INFO",
    "UNKNOWN_VERSION_INFO",
]
