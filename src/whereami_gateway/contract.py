"""Endpoint contract definitions for the whereami backend operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class EndpointContract:
    operation: str
    http_method: str
    http_route: str
    started: Optional[str]
    succeeded: Tuple[str, ...]
    failed: Optional[str]

    def kind(self, path: Optional[str] = None, *, offline: bool = False) -> str:
        return request_kind(self.http_method, path or self.http_route, offline=offline)


def request_kind(method: str, path: str, *, offline: bool = False) -> str:
    """Label used by the generic request events, e.g. ``"GET /api/version"``."""
    label = f"{method.upper()} {path}"
    return f"{label} (offline)" if offline else label


ENDPOINT_CONTRACTS: List[EndpointContract] = [
    EndpointContract("get_waypoints", "GET", "/api/waypoints",
                     "waypoints_load_started", ("waypoints_loaded",), "waypoints_load_failed"),
    EndpointContract("add_waypoint", "POST", "/api/bookmarks",
                     "waypoint_add_started", ("waypoint_added",), "waypoint_add_failed"),
    EndpointContract("delete_waypoint", "DELETE", "/api/bookmarks",
                     "waypoint_delete_started", ("waypoint_deleted",), "waypoint_delete_failed"),
    EndpointContract("rename_waypoint", "PATCH", "/api/bookmarks",
                     "waypoint_rename_started", ("waypoint_renamed",), "waypoint_rename_failed"),
    EndpointContract("get_tags", "GET", "/api/tags",
                     "tags_load_started", ("tags_loaded",), "tags_load_failed"),
    EndpointContract("add_tag", "POST", "/api/tags",
                     "tag_add_started", ("tag_added",), "tag_add_failed"),
    EndpointContract("delete_tag", "DELETE", "/api/tags",
                     "tag_delete_started", ("tag_deleted",), "tag_delete_failed"),
    # Callback style: no per-operation events.
    EndpointContract("get_distinct_tags", "GET", "/api/tags", None, (), None),
    EndpointContract("get_clusters", "GET", "/api/clusters",
                     "clusters_load_started", ("clusters_loaded",), "clusters_load_failed"),
    EndpointContract("get_location", "GET", "/api/location",
                     "location_started", ("location_received",), "location_failed"),
    EndpointContract("import_directory", "POST", "/api/import",
                     "import_started", ("import_finished",), "import_failed"),
    EndpointContract("suggest", "GET", "/api/suggest",
                     "suggest_started", ("suggestions_received",), "suggest_failed"),
    EndpointContract("get_recent_searches", "GET", "/api/recent_suggest",
                     "recent_searches_started",
                     ("recent_searches_loaded", "recent_search_entries_loaded"),
                     "recent_searches_failed"),
    EndpointContract("record_history", "POST", "/api/history",
                     "history_record_started", ("history_recorded",), "history_record_failed"),
    EndpointContract("get_version", "GET", "/api/version",
                     "version_started", ("version_loaded",), "version_failed"),
]

OPERATIONS: Dict[str, EndpointContract] = {contract.operation: contract for contract in ENDPOINT_CONTRACTS}

GENERIC_EVENTS: Tuple[str, ...] = ("request_succeeded", "request_failed")


def event_names() -> List[str]:
    """Every event name the client can emit, in contract order."""
    names: List[str] = []
    for contract in ENDPOINT_CONTRACTS:
        for name in (contract.started, *contract.succeeded, contract.failed):
            if name and name not in names:
                names.append(name)
    names.extend(GENERIC_EVENTS)
    return names


__all__ = [
    "EndpointContract",
    "ENDPOINT_CONTRACTS",
    "OPERATIONS",
    "GENERIC_EVENTS",
    "event_names",
    "request_kind",
]
