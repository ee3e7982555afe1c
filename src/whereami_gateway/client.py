"""
Asynchronous gateway client for the whereami backend.

Every operation method returns immediately: it validates its arguments,
emits the operation's ``*_started`` event and schedules the exchange on the
running event loop. The terminal event (succeeded or failed, never both) and
the generic ``request_succeeded``/``request_failed`` event follow once the
offline gate or the transport resolves. The returned ``asyncio.Task`` may be
awaited for the result (``None`` on failure) or simply ignored.

Invalid identifying arguments are rejected with a logged diagnostic: no event
is emitted and no request is sent, and the method returns ``None``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union
from urllib.parse import quote, urlencode

from .config import GatewayConfig
from .contract import OPERATIONS, EndpointContract, request_kind
from .errors import ValidationFailure
from .events import EventBus, Handler
from .models import UNKNOWN_VERSION_INFO, Cluster, LocationFix, RecentSearch, Suggestion, Waypoint
from .offline import OfflineGate
from .schemas import (
    AddWaypointPayload,
    ClusterQuery,
    HistoryPayload,
    ImportPayload,
    RenameWaypointPayload,
    TagMutationPayload,
    WaypointIdentity,
    validate_payload,
)
from .tags import Tag, TagLike, merge_tag, normalize_tag, normalize_tags, remove_tag, unique_tags
from .transport import TransportEngine

logger = logging.getLogger(__name__)

WaypointLike = Union[Waypoint, Mapping[str, Any]]
_MISSING = object()


def parse_json(text: Optional[str], default: Any = None) -> Any:
    """Decode a response body; empty or malformed bodies give ``default``."""
    if not text or not text.strip():
        return default
    try:
        return json.loads(text)
    except ValueError as exc:
        logger.warning("Malformed JSON response (%s), using default", exc)
        return default


def _query(path: str, params: Dict[str, Any]) -> str:
    return f"{path}?{urlencode(params, quote_via=quote)}"


def _tags_from(data: Any) -> Any:
    if isinstance(data, Mapping):
        return data.get("tags", _MISSING)
    if isinstance(data, list):
        return data
    return _MISSING


class WhereamiClient:
    """One method per backend operation, results delivered through ``events``."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        bus: Optional[EventBus] = None,
        transport: Optional[TransportEngine] = None,
    ):
        self.config = config or GatewayConfig()
        self.events = bus or EventBus()
        self.transport = transport or TransportEngine(self.config)
        self.offline = OfflineGate(self.config)
        self._tasks: Set[asyncio.Task] = set()
        logger.info("whereami gateway client ready (%s)",
                    "offline" if self.offline.active else self.config.base_url)

    # ------------------------------------------------------------------
    # lifecycle

    async def __aenter__(self) -> "WhereamiClient":
        if not self.offline.active:
            await self.transport.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def drain(self) -> None:
        """Wait until every scheduled operation has delivered its terminal event."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.transport.close()

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        return self.events.subscribe(name, handler)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # plumbing

    def _emit(self, name: Optional[str], *args: Any) -> None:
        if name:
            self.events.emit(name, *args)

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Awaitable[Any]) -> asyncio.Task:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    def _reject(operation: str, exc: ValidationFailure) -> None:
        logger.warning("%s rejected: %s", operation, exc.message)
        return None

    @staticmethod
    def _coerce_waypoint(value: WaypointLike) -> Waypoint:
        if isinstance(value, Waypoint):
            validate_payload(WaypointIdentity, {"name": value.name, "lat": value.lat, "lon": value.lon})
            return value
        if isinstance(value, Mapping):
            identity = validate_payload(WaypointIdentity, dict(value))
            extras = {key: value[key] for key in ("bookmark", "ele", "time", "desc") if value.get(key) is not None}
            return Waypoint(tags=value.get("tags") or [], **identity, **extras)
        raise ValidationFailure(f"expected a waypoint, got {type(value).__name__}")

    @staticmethod
    def _identity_params(waypoint: Waypoint) -> Dict[str, Any]:
        return {"name": waypoint.name, "lat": waypoint.lat, "lon": waypoint.lon}

    async def _exchange(
        self,
        contract: EndpointContract,
        path: str,
        *,
        context: Any,
        offline_result: Callable[[], Any],
        parse: Callable[[str], Any],
        succeeded: Callable[[Any], None],
        failed: Callable[[str], None],
        body: Any = None,
        timeout_ms: Optional[int] = None,
        generic_payload: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        if self.offline.active:
            result = offline_result()
            succeeded(result)
            payload = generic_payload(result) if generic_payload else result
            self._emit("request_succeeded", contract.kind(path, offline=True), payload, context)
            return result

        outcome = await self.transport.send(contract.http_method, path, body, timeout_ms)
        kind = contract.kind(path)
        if not outcome.ok:
            failed(outcome.message)
            self._emit("request_failed", kind, outcome.message, context)
            return None

        try:
            result = parse(outcome.body)
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            # Well-formed JSON of the wrong shape; the offline result is the safe default.
            logger.warning("%s: unexpected response shape (%s), using default", kind, exc)
            result = offline_result()
        succeeded(result)
        payload = generic_payload(result) if generic_payload else result
        self._emit("request_succeeded", kind, payload, context)
        return result

    # ------------------------------------------------------------------
    # waypoints

    def get_waypoints(self) -> asyncio.Task:
        contract = OPERATIONS["get_waypoints"]
        path = _query(contract.http_route, {"emoji": "true"})
        loop = asyncio.get_running_loop()
        self._emit(contract.started)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=None,
            offline_result=self.offline.waypoints,
            parse=self._parse_waypoints,
            succeeded=lambda waypoints: self._emit("waypoints_loaded", waypoints),
            failed=lambda message: self._emit("waypoints_load_failed", message),
        ))

    @staticmethod
    def _parse_waypoints(text: str) -> List[Waypoint]:
        data = parse_json(text, [])
        if isinstance(data, Mapping):
            data = data.get("waypoints", [])
        if not isinstance(data, list):
            return []
        waypoints = [Waypoint.from_dict(item) for item in data if isinstance(item, Mapping)]
        return [waypoint for waypoint in waypoints if waypoint is not None]

    def add_waypoint(self, waypoint: WaypointLike) -> Optional[asyncio.Task]:
        contract = OPERATIONS["add_waypoint"]
        try:
            wp = self._coerce_waypoint(waypoint)
            body = validate_payload(AddWaypointPayload, {
                **self._identity_params(wp),
                "tags": [tag.raw for tag in wp.tags] or None,
            })
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(text: str) -> Waypoint:
            data = parse_json(text, None)
            saved = Waypoint.from_dict(data) if isinstance(data, Mapping) else None
            if saved is None:
                return wp
            if not saved.tags and wp.tags:
                saved.tags = list(wp.tags)
            return saved

        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            body=body,
            context=wp,
            offline_result=lambda: self.offline.added_waypoint(wp),
            parse=parse,
            succeeded=lambda saved: self._emit("waypoint_added", saved, wp),
            failed=lambda message: self._emit("waypoint_add_failed", wp, message),
        ))

    def delete_waypoint(self, waypoint: WaypointLike) -> Optional[asyncio.Task]:
        contract = OPERATIONS["delete_waypoint"]
        try:
            wp = self._coerce_waypoint(waypoint)
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        path = _query(contract.http_route, self._identity_params(wp))
        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=wp,
            offline_result=lambda: self.offline.deleted_waypoint(wp),
            parse=lambda _text: wp,
            succeeded=lambda deleted: self._emit("waypoint_deleted", deleted),
            failed=lambda message: self._emit("waypoint_delete_failed", wp, message),
        ))

    def rename_waypoint(self, waypoint: WaypointLike, new_name: str) -> Optional[asyncio.Task]:
        contract = OPERATIONS["rename_waypoint"]
        try:
            wp = self._coerce_waypoint(waypoint)
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        candidate = (new_name or "").strip() if isinstance(new_name, str) else ""
        problem = None
        if not candidate:
            problem = "empty name"
        elif candidate == wp.name.strip():
            problem = "no change"
        if problem:
            logger.info("rename of %r not sent: %s", wp.name, problem)
            self._emit("waypoint_rename_failed", wp, new_name, problem)
            self._emit("request_failed", contract.kind(), problem, wp)
            return None

        body = validate_payload(RenameWaypointPayload, {
            "oldName": wp.name, "lat": wp.lat, "lon": wp.lon, "newName": candidate,
        })

        def parse(text: str) -> Waypoint:
            data = parse_json(text, {})
            confirmed = data.get("newName") if isinstance(data, Mapping) else None
            return wp.with_name(confirmed if isinstance(confirmed, str) and confirmed else candidate)

        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp, candidate)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            body=body,
            context=wp,
            offline_result=lambda: self.offline.renamed_waypoint(wp, candidate),
            parse=parse,
            succeeded=lambda renamed: self._emit("waypoint_renamed", renamed, wp),
            failed=lambda message: self._emit("waypoint_rename_failed", wp, candidate, message),
        ))

    # ------------------------------------------------------------------
    # tags

    def get_tags(self, waypoint: WaypointLike) -> Optional[asyncio.Task]:
        contract = OPERATIONS["get_tags"]
        try:
            wp = self._coerce_waypoint(waypoint)
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(text: str) -> List[Tag]:
            tags = _tags_from(parse_json(text, None))
            return normalize_tags(tags) if isinstance(tags, list) else []

        path = _query(contract.http_route, {**self._identity_params(wp), "emoji": "true"})
        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=wp,
            offline_result=lambda: self.offline.tags(wp),
            parse=parse,
            succeeded=lambda tags: self._emit("tags_loaded", wp, tags),
            failed=lambda message: self._emit("tags_load_failed", wp, message),
        ))

    def add_tag(self, waypoint: WaypointLike, tag: TagLike) -> Optional[asyncio.Task]:
        contract = OPERATIONS["add_tag"]
        try:
            wp = self._coerce_waypoint(waypoint)
            raw = normalize_tag(tag).key if tag is not None else ""
            body = validate_payload(TagMutationPayload, {**self._identity_params(wp), "tags": [raw]})
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(text: str) -> List[Tag]:
            tags = _tags_from(parse_json(text, None))
            if not isinstance(tags, list):
                return merge_tag(wp.tags, raw)
            return unique_tags(tags)

        path = _query(contract.http_route, {"emoji": "true"})
        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp, tag)
        return self._spawn(loop, self._exchange(
            contract, path,
            body=body,
            context=wp,
            offline_result=lambda: self.offline.tags_after_add(wp, raw),
            parse=parse,
            succeeded=lambda tags: self._emit("tag_added", wp, tags, tag),
            failed=lambda message: self._emit("tag_add_failed", wp, tag, message),
        ))

    def delete_tag(self, waypoint: WaypointLike, tag: TagLike) -> Optional[asyncio.Task]:
        contract = OPERATIONS["delete_tag"]
        try:
            wp = self._coerce_waypoint(waypoint)
            raw = normalize_tag(tag).key if tag is not None else ""
            if not raw:
                raise ValidationFailure("tag must not be blank")
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(text: str) -> List[Tag]:
            tags = _tags_from(parse_json(text, None))
            if not isinstance(tags, list):
                return remove_tag(wp.tags, raw)
            return normalize_tags(tags)

        path = _query(contract.http_route, {**self._identity_params(wp), "tag": raw, "emoji": "true"})
        loop = asyncio.get_running_loop()
        self._emit(contract.started, wp, tag)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=wp,
            offline_result=lambda: self.offline.tags_after_delete(wp, raw),
            parse=parse,
            succeeded=lambda tags: self._emit("tag_deleted", wp, tags, tag),
            failed=lambda message: self._emit("tag_delete_failed", wp, tag, message),
        ))

    def get_distinct_tags(
        self,
        on_result: Callable[[List[Tag]], Any],
        on_error: Optional[Callable[[str], Any]] = None,
    ) -> asyncio.Task:
        """Fetch the tag vocabulary. Callback style: no events are emitted.

        On failure ``on_error(message)`` is called, or ``on_result([])`` when
        no error callback was given.
        """
        contract = OPERATIONS["get_distinct_tags"]
        path = _query(contract.http_route, {"distinct": "true", "emoji": "true"})
        loop = asyncio.get_running_loop()
        return self._spawn(loop, self._distinct_tags(path, on_result, on_error))

    async def _distinct_tags(
        self,
        path: str,
        on_result: Callable[[List[Tag]], Any],
        on_error: Optional[Callable[[str], Any]],
    ) -> Optional[List[Tag]]:
        if self.offline.active:
            tags = self.offline.distinct_tags()
            _call_safely(on_result, tags)
            return tags
        outcome = await self.transport.send("GET", path)
        if not outcome.ok:
            logger.warning("distinct tags unavailable: %s", outcome.message)
            if on_error is not None:
                _call_safely(on_error, outcome.message)
            else:
                _call_safely(on_result, [])
            return None
        found = _tags_from(parse_json(outcome.body, None))
        tags = normalize_tags(found) if isinstance(found, list) else []
        _call_safely(on_result, tags)
        return tags

    # ------------------------------------------------------------------
    # map data

    def get_clusters(self, zoom: int, grid: int, bookmarks_only: bool = False) -> Optional[asyncio.Task]:
        contract = OPERATIONS["get_clusters"]
        try:
            query = validate_payload(ClusterQuery, {"zoom": zoom, "grid": grid, "bookmarks_only": bookmarks_only})
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        params: Dict[str, Any] = {"zoom": query["zoom"], "grid": query["grid"]}
        if query["bookmarks_only"]:
            params["bookmarksOnly"] = 1
        path = _query(contract.http_route, params)
        zoom, grid = query["zoom"], query["grid"]

        def parse(text: str) -> List[Cluster]:
            data = parse_json(text, [])
            if not isinstance(data, list):
                return []
            clusters = [Cluster.from_dict(item) for item in data if isinstance(item, Mapping)]
            return [cluster for cluster in clusters if cluster is not None]

        loop = asyncio.get_running_loop()
        self._emit(contract.started, zoom, grid)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=params,
            offline_result=self.offline.clusters,
            parse=parse,
            succeeded=lambda clusters: self._emit("clusters_loaded", clusters, zoom, grid),
            failed=lambda message: self._emit("clusters_load_failed", zoom, grid, message),
        ))

    def get_location(self) -> asyncio.Task:
        contract = OPERATIONS["get_location"]

        def parse(text: str) -> LocationFix:
            # 204 No Content means no fix yet
            data = parse_json(text, None)
            return LocationFix.from_dict(data) if isinstance(data, Mapping) else self.offline.location()

        loop = asyncio.get_running_loop()
        self._emit(contract.started)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            context=None,
            offline_result=self.offline.location,
            parse=parse,
            succeeded=lambda fix: self._emit("location_received", fix),
            failed=lambda message: self._emit("location_failed", message),
        ))

    def import_directory(self, path: str, recursive: bool = True) -> Optional[asyncio.Task]:
        contract = OPERATIONS["import_directory"]
        try:
            body = validate_payload(ImportPayload, {"dir": path, "recursive": recursive})
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(text: str) -> Dict[str, Any]:
            data = parse_json(text, {})
            return dict(data) if isinstance(data, Mapping) else {}

        loop = asyncio.get_running_loop()
        self._emit(contract.started, path)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            body=body,
            timeout_ms=self.config.import_timeout_ms,
            context=body,
            offline_result=lambda: self.offline.import_summary(body),
            parse=parse,
            succeeded=lambda summary: self._emit("import_finished", summary, path),
            failed=lambda message: self._emit("import_failed", path, message),
        ))

    # ------------------------------------------------------------------
    # search

    def suggest(self, query: str) -> Optional[asyncio.Task]:
        contract = OPERATIONS["suggest"]
        text = query.strip() if isinstance(query, str) else ""
        if not text:
            logger.debug("suggest skipped: blank query")
            return None

        def parse(body: str) -> List[Suggestion]:
            data = parse_json(body, {})
            if isinstance(data, Mapping):
                data = data.get("suggestions") or []
            if not isinstance(data, list):
                return []
            found = [Suggestion.from_dict(item) for item in data if isinstance(item, Mapping)]
            return [item for item in found if item is not None]

        path = _query(contract.http_route, {"q": text})
        loop = asyncio.get_running_loop()
        self._emit(contract.started, text)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=text,
            offline_result=self.offline.suggestions,
            parse=parse,
            succeeded=lambda suggestions: self._emit("suggestions_received", suggestions, text),
            failed=lambda message: self._emit("suggest_failed", text, message),
        ))

    def get_recent_searches(self, limit: Optional[int] = None) -> Optional[asyncio.Task]:
        contract = OPERATIONS["get_recent_searches"]
        limit = self.config.recent_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            return self._reject(contract.operation, ValidationFailure(f"invalid limit {limit!r}"))

        def succeeded(result: Tuple[List[str], List[RecentSearch]]) -> None:
            queries, entries = result
            self._emit("recent_searches_loaded", queries)
            self._emit("recent_search_entries_loaded", entries)

        path = _query(contract.http_route, {"limit": limit})
        loop = asyncio.get_running_loop()
        self._emit(contract.started, limit)
        return self._spawn(loop, self._exchange(
            contract, path,
            context=limit,
            offline_result=self.offline.recent_searches,
            parse=self._parse_recent,
            succeeded=succeeded,
            failed=lambda message: self._emit("recent_searches_failed", message),
            generic_payload=lambda result: {"queries": result[0], "entries": result[1]},
        ))

    @staticmethod
    def _parse_recent(text: str) -> Tuple[List[str], List[RecentSearch]]:
        data = parse_json(text, {})
        if isinstance(data, list):
            data = {"queries": data}
        if not isinstance(data, Mapping):
            return [], []
        raw_queries = data.get("queries") or []
        queries = [q for q in raw_queries if isinstance(q, str) and q.strip()] if isinstance(raw_queries, list) else []
        raw_entries = data.get("entries")
        if isinstance(raw_entries, list):
            entries = [RecentSearch.from_value(item) for item in raw_entries]
        else:
            entries = [RecentSearch.from_value(q) for q in queries]
        return queries, [entry for entry in entries if entry is not None]

    def record_history(
        self,
        query: str,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
    ) -> Optional[asyncio.Task]:
        """Store a search in the backend history. Fire-and-forget."""
        contract = OPERATIONS["record_history"]
        text = query.strip() if isinstance(query, str) else ""
        if not text:
            logger.debug("history record skipped: blank query")
            return None
        try:
            body = validate_payload(HistoryPayload, {"query": text, "lat": lat, "lon": lon})
        except ValidationFailure as exc:
            return self._reject(contract.operation, exc)

        def parse(body_text: str) -> Dict[str, Any]:
            data = parse_json(body_text, {})
            return dict(data) if isinstance(data, Mapping) else {}

        loop = asyncio.get_running_loop()
        self._emit(contract.started, text)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            body=body,
            context=body,
            offline_result=lambda: self.offline.history(body),
            parse=parse,
            succeeded=lambda result: self._emit("history_recorded", result, text),
            failed=lambda message: self._emit("history_record_failed", text, message),
        ))

    # ------------------------------------------------------------------
    # misc

    def get_version(self) -> asyncio.Task:
        contract = OPERATIONS["get_version"]

        def parse(text: str) -> Dict[str, Any]:
            data = parse_json(text, None)
            if not isinstance(data, Mapping):
                info = dict(UNKNOWN_VERSION_INFO)
                info["build_info"] = dict(UNKNOWN_VERSION_INFO["build_info"])
                return info
            info = dict(data)
            info.setdefault("app_version", "dev")
            return info

        loop = asyncio.get_running_loop()
        self._emit(contract.started)
        return self._spawn(loop, self._exchange(
            contract, contract.http_route,
            context=None,
            offline_result=self.offline.version,
            parse=parse,
            succeeded=lambda info: self._emit("version_loaded", info),
            failed=lambda message: self._emit("version_failed", message),
        ))

    def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        timeout_ms: Optional[int] = None,
        context: Any = None,
        on_success: Optional[Callable[[Any, Any], Any]] = None,
        on_error: Optional[Callable[[str, Any], Any]] = None,
    ) -> asyncio.Task:
        """Generic request for endpoints without a dedicated method.

        Same offline/timeout semantics as the named operations; only the
        generic events and the given callbacks are used. The success payload
        is the decoded JSON body, or the raw text when it is not JSON.
        """
        loop = asyncio.get_running_loop()
        return self._spawn(loop, self._request(path, method, body, timeout_ms, context, on_success, on_error))

    async def _request(self, path, method, body, timeout_ms, context, on_success, on_error) -> Any:
        if self.offline.active:
            if on_success is not None:
                _call_safely(on_success, None, context)
            self._emit("request_succeeded", request_kind(method, path, offline=True), None, context)
            return None

        outcome = await self.transport.send(method, path, body, timeout_ms)
        kind = request_kind(method, path)
        if not outcome.ok:
            if on_error is not None:
                _call_safely(on_error, outcome.message, context)
            self._emit("request_failed", kind, outcome.message, context)
            return None

        payload = parse_json(outcome.body, _MISSING)
        if payload is _MISSING:
            payload = outcome.body
        if on_success is not None:
            _call_safely(on_success, payload, context)
        self._emit("request_succeeded", kind, payload, context)
        return payload


def _call_safely(callback: Callable[..., Any], *args: Any) -> None:
    try:
        callback(*args)
    except Exception:
        logger.exception("Callback %r failed", callback)


__all__ = ["WhereamiClient", "parse_json"]
