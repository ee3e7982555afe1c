"""Asynchronous event-driven client for the whereami location backend."""

from .client import WhereamiClient
from .config import GatewayConfig
from .contract import ENDPOINT_CONTRACTS, OPERATIONS, event_names
from .errors import GatewayError, HTTPStatusFailure, RequestTimeout, SendFailure, ValidationFailure
from .events import EventBus
from .models import Cluster, LocationFix, RecentSearch, Suggestion, Waypoint
from .tags import Tag, normalize_tag, normalize_tags
from .transport import TransportEngine, TransportOutcome

__version__ = "0.1.0"

__all__ = [
    "WhereamiClient",
    "GatewayConfig",
    "ENDPOINT_CONTRACTS",
    "OPERATIONS",
    "event_names",
    "GatewayError",
    "HTTPStatusFailure",
    "RequestTimeout",
    "SendFailure",
    "ValidationFailure",
    "EventBus",
    "Cluster",
    "LocationFix",
    "RecentSearch",
    "Suggestion",
    "Waypoint",
    "Tag",
    "normalize_tag",
    "normalize_tags",
    "TransportEngine",
    "TransportOutcome",
    "__version__",
]
