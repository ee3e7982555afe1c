"""
Offline mode: synthesized results for every operation.

When the configured port is negative the client never touches the network.
Each operation still reports started/succeeded, with the result built here:
empty lists for loads, the caller's own input for mutations, zero values for
location and placeholder fields for version. Tag mutations apply the list
change locally so the echoed tag set matches what the backend would return.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .config import GatewayConfig
from .models import OFFLINE_VERSION_INFO, Cluster, LocationFix, RecentSearch, Suggestion, Waypoint
from .tags import Tag, TagLike, merge_tag, normalize_tags, remove_tag


class OfflineGate:
    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def active(self) -> bool:
        return self.config.offline

    def waypoints(self) -> List[Waypoint]:
        return []

    def added_waypoint(self, waypoint: Waypoint) -> Waypoint:
        return waypoint

    def deleted_waypoint(self, waypoint: Waypoint) -> Waypoint:
        return waypoint

    def renamed_waypoint(self, waypoint: Waypoint, new_name: str) -> Waypoint:
        return waypoint.with_name(new_name)

    def tags(self, waypoint: Waypoint) -> List[Tag]:
        return normalize_tags(waypoint.tags)

    def tags_after_add(self, waypoint: Waypoint, tag: TagLike) -> List[Tag]:
        return merge_tag(waypoint.tags, tag)

    def tags_after_delete(self, waypoint: Waypoint, tag: TagLike) -> List[Tag]:
        return remove_tag(waypoint.tags, tag)

    def distinct_tags(self) -> List[Tag]:
        return []

    def clusters(self) -> List[Cluster]:
        return []

    def location(self) -> LocationFix:
        return LocationFix(lat=0.0, lon=0.0, accuracy_m=0.0)

    def import_summary(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return dict(body)

    def suggestions(self) -> List[Suggestion]:
        return []

    def recent_searches(self) -> Tuple[List[str], List[RecentSearch]]:
        return [], []

    def history(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return dict(body)

    def version(self) -> Dict[str, Any]:
        info = dict(OFFLINE_VERSION_INFO)
        info["build_info"] = dict(OFFLINE_VERSION_INFO["build_info"])
        return info


__all__ = ["OfflineGate"]
