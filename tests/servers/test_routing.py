"""
Brief: Tests for launchpad.servers.routing route resolution and handlers.

Inputs:
  - None

Outputs:
  - None
"""

import json

import pytest

from launchpad.servers.routing import (
    CONTENT_TYPE_HTML,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_TEXT,
    ControlRouter,
    LifecycleAction,
    RouteKind,
    resolve_route,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, LifecycleAction.START),
        ("start", LifecycleAction.START),
        ("STOP", LifecycleAction.STOP),
        ("ReStArT", LifecycleAction.RESTART),
        ("bogus", LifecycleAction.INVALID),
        ("", LifecycleAction.INVALID),
        ("invalid", LifecycleAction.INVALID),
        (" stop ", LifecycleAction.INVALID),
    ],
)
def test_lifecycle_action_parse(raw, expected):
    assert LifecycleAction.parse(raw) is expected


@pytest.mark.parametrize(
    "method, target, kind",
    [
        ("GET", "/", RouteKind.INDEX),
        ("GET", "/index.html", RouteKind.INDEX),
        ("GET", "/?x=1", RouteKind.INDEX),
        ("GET", "/api/executables", RouteKind.LIST_EXECUTABLES),
        ("POST", "/api/executables", RouteKind.NOT_FOUND),
        ("POST", "/", RouteKind.NOT_FOUND),
        ("GET", "/api/executables/1", RouteKind.NOT_FOUND),
        ("POST", "/api/executables/", RouteKind.BAD_PATH),
        ("POST", "/api/executables/abc", RouteKind.BAD_ID),
        ("POST", "/api/executables/1_0", RouteKind.BAD_ID),
        ("POST", "/api/executables/\uff11", RouteKind.BAD_ID),
        ("POST", "/api/executables/4294967296", RouteKind.BAD_ID),
        ("POST", "/api/executables/-7", RouteKind.EXECUTABLE_ACTION),
        ("POST", "/api/executables/3", RouteKind.EXECUTABLE_ACTION),
        ("DELETE", "/api/executables/3", RouteKind.NOT_FOUND),
        ("GET", "/favicon.ico", RouteKind.NOT_FOUND),
    ],
)
def test_resolve_route(method, target, kind):
    assert resolve_route(method, target).kind is kind


def test_resolve_route_action_defaults_to_start():
    route = resolve_route("POST", "/api/executables/2")
    assert route.exe_id == 2
    assert route.action is LifecycleAction.START

    route = resolve_route("POST", "/api/executables/2?action=Restart")
    assert route.action is LifecycleAction.RESTART


def test_index_renders_html(fake_registry):
    reply = ControlRouter(fake_registry).handle("GET", "/index.html")
    assert reply.status == 200
    assert reply.content_type == CONTENT_TYPE_HTML
    assert b"<!DOCTYPE html>" in reply.body


def test_list_returns_registry_snapshot(fake_registry):
    """
    Brief: GET /api/executables returns one object per entry, ids 1..N.

    Inputs:
      - fake_registry fixture

    Outputs:
      - None
    """
    reply = ControlRouter(fake_registry).handle("GET", "/api/executables")
    assert reply.status == 200
    assert reply.content_type == CONTENT_TYPE_JSON
    items = json.loads(reply.body)
    assert [i["id"] for i in items] == [1, 2, 3]
    assert [i["name"] for i in items] == ["server", "scanner", "ghost"]


@pytest.mark.parametrize("exe_id", ["0", "4", "-1", "+2147483647", "-2147483648"])
def test_action_out_of_range_is_404(fake_registry, exe_id):
    reply = ControlRouter(fake_registry).handle(
        "POST", f"/api/executables/{exe_id}?action=start"
    )
    assert reply.status == 404
    assert reply.content_type == CONTENT_TYPE_TEXT
    assert reply.body == b"Executable not found"
    assert fake_registry.calls == []


@pytest.mark.parametrize(
    "exe_id",
    ["abc", "1_0", "\uff11", "1.0", "0x1", " 1", "99999999999999999999", "2147483648"],
)
def test_action_bad_id_is_400(fake_registry, exe_id):
    reply = ControlRouter(fake_registry).handle(
        "POST", f"/api/executables/{exe_id}?action=start"
    )
    assert reply.status == 400
    assert reply.body == b"Invalid executable ID"
    assert fake_registry.calls == []


def test_action_empty_id_is_400(fake_registry):
    reply = ControlRouter(fake_registry).handle("POST", "/api/executables/")
    assert reply.status == 400
    assert reply.body == b"Invalid request path"


def test_invalid_action_is_400_with_json(fake_registry):
    reply = ControlRouter(fake_registry).handle(
        "POST", "/api/executables/1?action=bogus"
    )
    assert reply.status == 400
    assert reply.content_type == CONTENT_TYPE_JSON
    assert json.loads(reply.body) == {"success": False, "message": "Invalid action"}
    assert fake_registry.calls == []


@pytest.mark.parametrize(
    "action, op, message",
    [
        ("start", "start", "Executable started"),
        ("STOP", "stop", "Executable stopped"),
        ("restart", "restart", "Executable restarted"),
    ],
)
def test_action_success(fake_registry, action, op, message):
    """
    Brief: Recognised actions call the registry on the addressed entry.

    Inputs:
      - action/op/message: query value, expected registry call, reply message

    Outputs:
      - None
    """
    reply = ControlRouter(fake_registry).handle(
        "POST", f"/api/executables/2?action={action}"
    )
    assert reply.status == 200
    assert json.loads(reply.body) == {"success": True, "message": message}
    assert fake_registry.calls == [(op, "scanner")]


def test_action_without_query_starts(fake_registry):
    reply = ControlRouter(fake_registry).handle("POST", "/api/executables/2")
    assert reply.status == 200
    assert fake_registry.calls == [("start", "scanner")]


def test_action_failure_is_500_with_message(fake_registry):
    fake_registry.fail_with = RuntimeError("permission denied")
    reply = ControlRouter(fake_registry).handle(
        "POST", "/api/executables/1?action=start"
    )
    assert reply.status == 500
    assert json.loads(reply.body) == {"success": False, "message": "permission denied"}


def test_unknown_route_is_404(fake_registry):
    reply = ControlRouter(fake_registry).handle("GET", "/nope")
    assert reply.status == 404
    assert reply.body == b"Not Found"
