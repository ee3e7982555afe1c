from __future__ import annotations

import asyncio

import pytest

from conftest import EventRecorder
from whereami_gateway.client import WhereamiClient, parse_json
from whereami_gateway.config import GatewayConfig
from whereami_gateway.models import UNKNOWN_VERSION_INFO, Cluster, LocationFix, RecentSearch, Suggestion, Waypoint
from whereami_gateway.tags import Tag


@pytest.fixture
def home():
    return Waypoint("My Home", 52.52, 13.405, tags=["food"])


# ----------------------------------------------------------------------
# waypoints

async def test_get_waypoints(client, backend, recorder):
    backend.respond("GET", "/api/waypoints", json_body=[
        {"name": "A", "lat": 1.0, "lon": 2.0, "tags": [{"raw": "food", "emoji": "🍴"}]},
        {"name": "broken", "lat": "x", "lon": 2.0},
    ])
    waypoints = await client.get_waypoints()

    assert backend.requests[0].query == {"emoji": "true"}
    assert [wp.name for wp in waypoints] == ["A"]
    assert waypoints[0].tags == [Tag("food", "🍴 food", emoji="🍴")]
    assert recorder.names() == ["waypoints_load_started", "waypoints_loaded", "request_succeeded"]
    kind, payload, context = recorder.only("request_succeeded")
    assert kind == "GET /api/waypoints?emoji=true"
    assert payload == waypoints


async def test_started_precedes_terminal_event(client, backend, recorder):
    backend.respond("GET", "/api/waypoints", json_body=[])
    task = client.get_waypoints()
    assert recorder.names() == ["waypoints_load_started"]
    await task
    assert recorder.names()[1] == "waypoints_loaded"


async def test_malformed_body_gives_safe_default(client, backend, recorder):
    backend.respond("GET", "/api/waypoints", text="<html>oops</html>")
    assert await client.get_waypoints() == []
    assert recorder.only("waypoints_loaded") == ([],)


async def test_add_waypoint_posts_body_and_keeps_input_tags(client, backend, recorder, home):
    backend.respond("POST", "/api/bookmarks", json_body={"name": "My Home", "lat": 52.52, "lon": 13.405})
    saved = await client.add_waypoint(home)

    request = backend.requests[0]
    assert request.json() == {"name": "My Home", "lat": 52.52, "lon": 13.405, "tags": ["food"]}
    assert saved.tags == home.tags
    assert recorder.only("waypoint_added") == (saved, home)


async def test_add_waypoint_unparseable_response_echoes_input(client, backend, recorder, home):
    backend.respond("POST", "/api/bookmarks", text="ok")
    assert await client.add_waypoint(home) is home


async def test_delete_waypoint_404(client, backend, recorder, home):
    result = await client.delete_waypoint(home)

    assert result is None
    assert backend.requests[0].query == {"name": "My Home", "lat": "52.52", "lon": "13.405"}
    assert recorder.names() == ["waypoint_delete_started", "waypoint_delete_failed", "request_failed"]
    assert recorder.only("waypoint_delete_failed") == (home, "HTTP 404 not found")
    assert recorder.only("request_failed") == (
        "DELETE /api/bookmarks?name=My%20Home&lat=52.52&lon=13.405", "HTTP 404 not found", home)


async def test_delete_waypoint_success(client, backend, recorder, home):
    backend.respond("DELETE", "/api/bookmarks", status=204)
    assert await client.delete_waypoint(home) is home
    assert recorder.only("waypoint_deleted") == (home,)


@pytest.mark.parametrize("new_name,reason", [("", "empty name"), ("   ", "empty name"), (" My Home ", "no change")])
async def test_rename_rejected_locally(client, backend, recorder, home, new_name, reason):
    assert client.rename_waypoint(home, new_name) is None
    await client.drain()

    assert backend.requests == []
    assert recorder.names() == ["waypoint_rename_failed", "request_failed"]
    assert recorder.only("waypoint_rename_failed") == (home, new_name, reason)
    assert recorder.only("request_failed") == ("PATCH /api/bookmarks", reason, home)


async def test_rename_sends_patch(client, backend, recorder, home):
    backend.respond("PATCH", "/api/bookmarks", json_body={
        "renamed": True, "oldName": "My Home", "newName": "Flat", "lat": 52.52, "lon": 13.405})
    renamed = await client.rename_waypoint(home, " Flat ")

    assert backend.requests[0].json() == {"oldName": "My Home", "lat": 52.52, "lon": 13.405, "newName": "Flat"}
    assert renamed.name == "Flat"
    assert recorder.only("waypoint_rename_started") == (home, "Flat")
    assert recorder.only("waypoint_renamed") == (renamed, home)


@pytest.mark.parametrize("bad", [
    {"name": "", "lat": 1.0, "lon": 2.0},
    {"name": "x", "lat": float("nan"), "lon": 2.0},
    {"name": "x", "lat": 1.0},
    "not a waypoint",
])
async def test_invalid_waypoint_rejected_without_events(client, backend, recorder, bad):
    assert client.add_waypoint(bad) is None
    assert client.delete_waypoint(bad) is None
    assert client.get_tags(bad) is None
    await client.drain()
    assert recorder.events == []
    assert backend.requests == []


# ----------------------------------------------------------------------
# tags

async def test_get_tags(client, backend, recorder, home):
    backend.respond("GET", "/api/tags", json_body={"tags": ["food", {"raw": "work", "emoji": "💼"}]})
    tags = await client.get_tags(home)

    assert backend.requests[0].query == {"name": "My Home", "lat": "52.52", "lon": "13.405", "emoji": "true"}
    assert tags == [Tag("food", "food"), Tag("work", "💼 work", emoji="💼")]
    assert recorder.only("tags_loaded") == (home, tags)


async def test_add_existing_tag_uses_server_list(client, backend, recorder):
    plain = Waypoint("P", 1.0, 2.0, tags=["a"])
    backend.respond("POST", "/api/tags", json_body={"tags": ["a"]})
    tags = await client.add_tag(plain, "a")

    request = backend.requests[0]
    assert request.query == {"emoji": "true"}
    assert request.json() == {"name": "P", "lat": 1.0, "lon": 2.0, "tags": ["a"]}
    assert tags == [Tag("a", "a")]
    assert recorder.only("tag_added") == (plain, [Tag("a", "a")], "a")


async def test_add_tag_without_list_merges_locally(client, backend, recorder, home):
    backend.respond("POST", "/api/tags", json_body={"ok": True})
    tags = await client.add_tag(home, "trip")
    assert [tag.raw for tag in tags] == ["food", "trip"]


async def test_add_blank_tag_rejected(client, backend, recorder, home):
    assert client.add_tag(home, "  ") is None
    assert recorder.events == []


async def test_delete_tag(client, backend, recorder, home):
    backend.respond("DELETE", "/api/tags", json_body={"tags": []})
    tags = await client.delete_tag(home, "food")

    assert backend.requests[0].query == {
        "name": "My Home", "lat": "52.52", "lon": "13.405", "tag": "food", "emoji": "true"}
    assert tags == []
    assert recorder.only("tag_deleted") == (home, [], "food")


async def test_delete_tag_failure(client, backend, recorder, home):
    backend.respond("DELETE", "/api/tags", status=500, text="db locked")
    await client.delete_tag(home, "food")
    assert recorder.only("tag_delete_failed") == (home, "food", "HTTP 500 db locked")


async def test_distinct_tags_callback(client, backend, recorder):
    backend.respond("GET", "/api/tags", json_body={"tags": [{"raw": "food", "emoji": "🍴", "display": "🍴 food"}]})
    results = []
    await client.get_distinct_tags(results.append)

    assert backend.requests[0].query == {"distinct": "true", "emoji": "true"}
    assert results == [[Tag("food", "🍴 food", emoji="🍴")]]
    assert recorder.events == []


async def test_distinct_tags_failure_paths(client, backend):
    backend.respond("GET", "/api/tags", status=503, text="busy")
    results, errors = [], []
    await client.get_distinct_tags(results.append, errors.append)
    assert results == [] and errors == ["HTTP 503 busy"]

    await client.get_distinct_tags(results.append)
    assert results == [[]]


# ----------------------------------------------------------------------
# map data

async def test_clusters_query(client, backend, recorder):
    backend.respond("GET", "/api/clusters", json_body=[
        {"type": "cluster", "lat": 1.0, "lon": 2.0, "count": 12},
        {"type": "waypoint", "lat": 3.0, "lon": 4.0, "name": "A", "bookmark": True},
    ])
    clusters = await client.get_clusters(12, 64, bookmarks_only=True)

    assert backend.requests[0].query == {"zoom": "12", "grid": "64", "bookmarksOnly": "1"}
    assert [cluster.is_cluster for cluster in clusters] == [True, False]
    assert isinstance(clusters[0], Cluster)
    assert recorder.only("clusters_loaded") == (clusters, 12, 64)


async def test_clusters_without_bookmark_filter(client, backend):
    backend.respond("GET", "/api/clusters", json_body=[])
    await client.get_clusters(3, 40)
    assert backend.requests[0].query == {"zoom": "3", "grid": "40"}


async def test_invalid_cluster_query_rejected(client, recorder):
    assert client.get_clusters(-1, 40) is None
    assert client.get_clusters(3, 0) is None
    assert recorder.events == []


async def test_location(client, backend, recorder):
    backend.respond("GET", "/api/location", json_body={"lat": 48.1, "lon": 11.5, "accuracy_m": 12.0})
    fix = await client.get_location()
    assert fix == LocationFix(48.1, 11.5, 12.0)
    assert recorder.only("location_received") == (fix,)


async def test_location_no_content_is_zero_fix(client, backend, recorder):
    backend.respond("GET", "/api/location", status=204)
    fix = await client.get_location()
    assert fix == LocationFix(0.0, 0.0, 0.0)
    assert recorder.names() == ["location_started", "location_received", "request_succeeded"]


async def test_import_uses_long_timeout(client, backend, recorder, monkeypatch):
    backend.respond("POST", "/api/import", json_body={"imported": 3, "skipped": 1})
    calls = []
    original = client.transport.send

    async def spy(method, path, body=None, timeout_ms=None):
        calls.append((method, path, body, timeout_ms))
        return await original(method, path, body, timeout_ms)

    monkeypatch.setattr(client.transport, "send", spy)
    summary = await client.import_directory("/data/gpx", recursive=False)

    assert calls == [("POST", "/api/import", {"dir": "/data/gpx", "recursive": False}, 60000)]
    assert summary == {"imported": 3, "skipped": 1}
    assert recorder.only("import_finished") == (summary, "/data/gpx")


# ----------------------------------------------------------------------
# search

async def test_suggest(client, backend, recorder):
    backend.respond("GET", "/api/suggest", json_body={"query": "berl", "suggestions": [
        {"name": "Berlin", "lat": 52.5, "lon": 13.4, "source": "geocode", "class": "place", "type": "city"},
    ]})
    suggestions = await client.suggest("  berl ")

    assert backend.requests[0].query == {"q": "berl"}
    assert suggestions == [Suggestion("Berlin", 52.5, 13.4, "geocode", "place", "city")]
    assert recorder.only("suggestions_received") == (suggestions, "berl")


async def test_blank_suggest_and_history_are_noops(client, backend, recorder):
    assert client.suggest("   ") is None
    assert client.record_history("") is None
    await client.drain()
    assert recorder.events == []
    assert backend.requests == []


async def test_recent_searches_with_entries(client, backend, recorder):
    backend.respond("GET", "/api/recent_suggest", json_body={
        "queries": ["berlin", "paris"],
        "entries": [{"query": "berlin", "lat": 52.5, "lon": 13.4}, {"query": "paris"}],
    })
    queries, entries = await client.get_recent_searches(2)

    assert backend.requests[0].query == {"limit": "2"}
    assert queries == ["berlin", "paris"]
    assert entries == [RecentSearch("berlin", 52.5, 13.4), RecentSearch("paris")]
    assert recorder.names() == [
        "recent_searches_started", "recent_searches_loaded", "recent_search_entries_loaded", "request_succeeded"]
    _kind, payload, context = recorder.only("request_succeeded")
    assert payload == {"queries": queries, "entries": entries}
    assert context == 2


async def test_recent_searches_synthesizes_entries(client, backend, recorder):
    backend.respond("GET", "/api/recent_suggest", json_body={"queries": ["berlin", "", "rome"]})
    await client.get_recent_searches()

    assert backend.requests[0].query == {"limit": "10"}
    assert recorder.only("recent_searches_loaded") == (["berlin", "rome"],)
    assert recorder.only("recent_search_entries_loaded") == ([RecentSearch("berlin"), RecentSearch("rome")],)


async def test_recent_searches_invalid_limit(client, recorder):
    assert client.get_recent_searches(0) is None
    assert recorder.events == []


async def test_record_history(client, backend, recorder):
    backend.respond("POST", "/api/history", json_body={"stored": True})
    await client.record_history(" berlin ", 52.5, 13.4)
    assert backend.requests[0].json() == {"query": "berlin", "lat": 52.5, "lon": 13.4}
    assert recorder.only("history_recorded") == ({"stored": True}, "berlin")


# ----------------------------------------------------------------------
# version, failures, generic requests

async def test_version(client, backend, recorder):
    backend.respond("GET", "/api/version", json_body={"go_version": "go1.22", "go_os": "linux", "go_arch": "amd64"})
    info = await client.get_version()
    assert info["go_version"] == "go1.22"
    assert info["app_version"] == "dev"


async def test_version_parse_fallback(client, backend, recorder):
    backend.respond("GET", "/api/version", text="definitely not json")
    info = await client.get_version()
    assert info == UNKNOWN_VERSION_INFO
    assert recorder.only("version_loaded") == (info,)


async def test_timeout_emits_exactly_one_failure(backend):
    backend.respond("GET", "/api/version", json_body={"go_version": "go1.22"}, delay=0.3)
    async with WhereamiClient(GatewayConfig(api_port=backend.port, request_timeout_ms=50)) as slow:
        recorder = EventRecorder(slow.events)
        assert await slow.get_version() is None
        await asyncio.sleep(0.4)

    assert recorder.names() == ["version_started", "version_failed", "request_failed"]
    assert recorder.only("version_failed") == ("timeout (50 ms)",)


async def test_handler_errors_do_not_break_delivery(client, backend, recorder):
    backend.respond("GET", "/api/version", json_body={})

    def explode(_info):
        raise RuntimeError("ui bug")

    client.subscribe("version_loaded", explode)
    await client.get_version()
    assert "request_succeeded" in recorder.names()


async def test_generic_request_json_and_text(client, backend, recorder):
    backend.respond("GET", "/api/stats", json_body={"count": 3})
    backend.respond("POST", "/api/echo", text="plain words")
    seen = []

    result = await client.request("/api/stats", context="c1",
                                  on_success=lambda payload, ctx: seen.append((payload, ctx)))
    text = await client.request("/api/echo", method="post", body={"a": 1})

    assert result == {"count": 3}
    assert text == "plain words"
    assert seen == [({"count": 3}, "c1")]
    assert recorder.args_of("request_succeeded") == [
        ("GET /api/stats", {"count": 3}, "c1"),
        ("POST /api/echo", "plain words", None),
    ]


async def test_generic_request_error_callback(client, backend, recorder):
    errors = []
    await client.request("/api/missing", context=7, on_error=lambda message, ctx: errors.append((message, ctx)))
    assert errors == [("HTTP 404 not found", 7)]
    assert recorder.only("request_failed") == ("GET /api/missing", "HTTP 404 not found", 7)


async def test_close_cancels_pending_operations(backend):
    backend.respond("GET", "/api/version", json_body={}, delay=0.5)
    gateway = WhereamiClient(GatewayConfig(api_port=backend.port))
    gateway.get_version()
    assert gateway.pending == 1
    await gateway.close()
    assert gateway.pending == 0


def test_parse_json_defaults():
    assert parse_json("", []) == []
    assert parse_json("{bad", {}) == {}
    assert parse_json('{"a": 1}') == {"a": 1}


# ----------------------------------------------------------------------
# well-formed JSON of the wrong shape

@pytest.mark.parametrize("tags,expected", [(5, ["5"]), (True, ["True"]), ({"raw": "solo"}, ["solo"])])
async def test_waypoint_scalar_tags_do_not_break_load(client, backend, recorder, tags, expected):
    backend.respond("GET", "/api/waypoints", json_body=[{"name": "x", "lat": 1, "lon": 2, "tags": tags}])
    waypoints = await client.get_waypoints()

    assert [tag.raw for tag in waypoints[0].tags] == expected
    assert recorder.names() == ["waypoints_load_started", "waypoints_loaded", "request_succeeded"]


async def test_waypoint_list_with_junk_elements(client, backend, recorder):
    backend.respond("GET", "/api/waypoints", json_body=[7, "x", None, {"name": "A", "lat": 1, "lon": 2}])
    waypoints = await client.get_waypoints()
    assert [wp.name for wp in waypoints] == ["A"]
    assert recorder.names() == ["waypoints_load_started", "waypoints_loaded", "request_succeeded"]


@pytest.mark.parametrize("body", [
    {"name": "My Home", "lat": 52.52, "lon": 13.405, "tags": 5},
    [1, 2, 3],
    {"name": "My Home", "lat": None, "lon": 13.405},
])
async def test_add_waypoint_wrong_shape(client, backend, recorder, home, body):
    backend.respond("POST", "/api/bookmarks", json_body=body)
    saved = await client.add_waypoint(home)

    assert saved.identity == home.identity
    assert recorder.names() == ["waypoint_add_started", "waypoint_added", "request_succeeded"]


async def test_add_waypoint_from_mapping_with_scalar_tags(client, backend, recorder):
    backend.respond("POST", "/api/bookmarks", json_body={})
    saved = await client.add_waypoint({"name": "Cafe", "lat": 1.0, "lon": 2.0, "tags": 5})

    assert backend.requests[0].json()["tags"] == ["5"]
    assert saved.tags == [Tag("5", "5")]


@pytest.mark.parametrize("body,expected", [
    ({"tags": 5}, []),
    ({"tags": [5, None, "a"]}, ["5", "a"]),
    ("tags", []),
])
async def test_get_tags_wrong_shape(client, backend, recorder, home, body, expected):
    backend.respond("GET", "/api/tags", json_body=body)
    tags = await client.get_tags(home)

    assert [tag.raw for tag in tags] == expected
    assert recorder.names() == ["tags_load_started", "tags_loaded", "request_succeeded"]


async def test_clusters_wrong_shape(client, backend, recorder):
    backend.respond("GET", "/api/clusters", json_body=[
        {"type": "cluster", "lat": 1, "lon": 2, "count": "many"},
        "junk",
        {"type": "cluster", "lat": "x", "lon": 2},
    ])
    clusters = await client.get_clusters(5, 40)

    assert [(c.kind, c.count) for c in clusters] == [("cluster", 1)]
    assert recorder.names() == ["clusters_load_started", "clusters_loaded", "request_succeeded"]


async def test_recent_searches_wrong_shape(client, backend, recorder):
    backend.respond("GET", "/api/recent_suggest", json_body={"queries": "berlin", "entries": ["rome", 7, {"query": ""}]})
    queries, entries = await client.get_recent_searches()

    assert queries == []
    assert entries == [RecentSearch("rome")]
    assert recorder.names() == [
        "recent_searches_started", "recent_searches_loaded", "recent_search_entries_loaded", "request_succeeded"]


async def test_parser_error_uses_safe_default(client, backend, recorder, monkeypatch):
    def explode(cls, data):
        raise TypeError("unexpected field")

    monkeypatch.setattr(Waypoint, "from_dict", classmethod(explode))
    backend.respond("GET", "/api/waypoints", json_body=[{"name": "A", "lat": 1, "lon": 2}])

    assert await client.get_waypoints() == []
    assert recorder.names() == ["waypoints_load_started", "waypoints_loaded", "request_succeeded"]
