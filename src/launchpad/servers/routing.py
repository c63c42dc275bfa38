"""Request routing and handlers for the control API.

Handlers never touch the socket. Each returns an :class:`HttpReply`, and the
request handler in ``webserver`` writes it out exactly once.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
import urllib.parse
from typing import Callable, Dict, Optional

from ..registry import ExecutableRegistry, ManagedExecutable
from .codec import (
    ActionResult,
    PageStrings,
    encode_action_result,
    encode_executables,
    render_status_page,
)

logger = logging.getLogger("launchpad.routing")

CONTENT_TYPE_HTML = "text/html; charset=utf-8"
CONTENT_TYPE_JSON = "application/json; charset=utf-8"
CONTENT_TYPE_TEXT = "text/plain; charset=utf-8"

EXECUTABLES_PATH = "/api/executables"

# Ids are signed 32-bit decimal integers; anything else is a malformed id.
_ID_RE = re.compile(r"[+-]?[0-9]+")
_ID_MIN = -(2**31)
_ID_MAX = 2**31 - 1


@dataclasses.dataclass(frozen=True)
class HttpReply:
    """Status, content type and body of one response."""

    status: int
    content_type: Optional[str] = None
    body: bytes = b""

    @classmethod
    def text(cls, status: int, text: str) -> "HttpReply":
        return cls(status, CONTENT_TYPE_TEXT, text.encode("utf-8"))

    @classmethod
    def json(cls, status: int, text: str) -> "HttpReply":
        return cls(status, CONTENT_TYPE_JSON, text.encode("utf-8"))

    @classmethod
    def html(cls, status: int, text: str) -> "HttpReply":
        return cls(status, CONTENT_TYPE_HTML, text.encode("utf-8"))

    @classmethod
    def empty(cls, status: int) -> "HttpReply":
        return cls(status)


class LifecycleAction(enum.Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    INVALID = "invalid"

    @classmethod
    def parse(cls, value: Optional[str]) -> "LifecycleAction":
        """Brief: Map a raw ``action`` query value to a LifecycleAction.

        Inputs:
          - value: Query string value, or None when the parameter is absent.

        Outputs:
          - LifecycleAction; START when value is None, INVALID when unknown.
            Matching is case-insensitive.
        """

        if value is None:
            return cls.START
        try:
            action = cls(value.lower())
        except ValueError:
            return cls.INVALID
        return action


_ACTION_MESSAGES: Dict[LifecycleAction, str] = {
    LifecycleAction.START: "Executable started",
    LifecycleAction.STOP: "Executable stopped",
    LifecycleAction.RESTART: "Executable restarted",
}


class RouteKind(enum.Enum):
    INDEX = "index"
    LIST_EXECUTABLES = "list_executables"
    EXECUTABLE_ACTION = "executable_action"
    BAD_ID = "bad_id"
    BAD_PATH = "bad_path"
    NOT_FOUND = "not_found"


@dataclasses.dataclass(frozen=True)
class Route:
    kind: RouteKind
    exe_id: Optional[int] = None
    action: Optional[LifecycleAction] = None


def resolve_route(method: str, target: str) -> Route:
    """Brief: Resolve an HTTP method and request target to a Route.

    Inputs:
      - method: HTTP method (e.g. "GET").
      - target: Raw request target including any query string.

    Outputs:
      - Route describing which handler applies.

    Example:
      >>> resolve_route("POST", "/api/executables/2?action=STOP")
      Route(kind=<RouteKind.EXECUTABLE_ACTION: 'executable_action'>, exe_id=2, action=<LifecycleAction.STOP: 'stop'>)
    """

    parsed = urllib.parse.urlsplit(target)
    path = parsed.path
    method = method.upper()

    if method == "GET" and path in {"/", "/index.html"}:
        return Route(RouteKind.INDEX)
    if method == "GET" and path == EXECUTABLES_PATH:
        return Route(RouteKind.LIST_EXECUTABLES)

    prefix = EXECUTABLES_PATH + "/"
    if method == "POST" and path.startswith(prefix):
        id_text = path[len(prefix) :].split("/", 1)[0]
        if not id_text:
            return Route(RouteKind.BAD_PATH)
        if not _ID_RE.fullmatch(id_text):
            return Route(RouteKind.BAD_ID)
        exe_id = int(id_text)
        if not _ID_MIN <= exe_id <= _ID_MAX:
            return Route(RouteKind.BAD_ID)

        params = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
        raw_action = params["action"][0] if "action" in params else None
        return Route(
            RouteKind.EXECUTABLE_ACTION,
            exe_id=exe_id,
            action=LifecycleAction.parse(raw_action),
        )

    return Route(RouteKind.NOT_FOUND)


class ControlRouter:
    """Brief: Runs the handler for each route against a registry.

    Inputs (constructor):
      - registry: ExecutableRegistry read and mutated per request.
      - page_strings: Display strings for the status page.

    Outputs:
      - ControlRouter whose handle() returns an HttpReply. Expected error
        conditions (bad id, unknown route, failing action) come back as
        replies; only unexpected faults raise.
    """

    def __init__(
        self,
        registry: ExecutableRegistry,
        page_strings: Optional[PageStrings] = None,
    ) -> None:
        self.registry = registry
        self.page_strings = page_strings or PageStrings()
        self._handlers: Dict[RouteKind, Callable[[Route], HttpReply]] = {
            RouteKind.INDEX: self._handle_index,
            RouteKind.LIST_EXECUTABLES: self._handle_list,
            RouteKind.EXECUTABLE_ACTION: self._handle_action,
            RouteKind.BAD_ID: lambda _r: HttpReply.text(400, "Invalid executable ID"),
            RouteKind.BAD_PATH: lambda _r: HttpReply.text(400, "Invalid request path"),
            RouteKind.NOT_FOUND: lambda _r: HttpReply.text(404, "Not Found"),
        }

    def handle(self, method: str, target: str) -> HttpReply:
        route = resolve_route(method, target)
        return self._handlers[route.kind](route)

    # ---------- Handlers ----------

    def _handle_index(self, _route: Route) -> HttpReply:
        return HttpReply.html(200, render_status_page(self.page_strings))

    def _handle_list(self, _route: Route) -> HttpReply:
        return HttpReply.json(200, encode_executables(self.registry.executables))

    def _lookup(self, exe_id: int) -> Optional[ManagedExecutable]:
        # ids are positions in the snapshot taken here, not durable identifiers
        executables = self.registry.executables
        if exe_id < 1 or exe_id > len(executables):
            return None
        return executables[exe_id - 1]

    def _handle_action(self, route: Route) -> HttpReply:
        assert route.exe_id is not None and route.action is not None

        exe = self._lookup(route.exe_id)
        if exe is None:
            return HttpReply.text(404, "Executable not found")

        if route.action is LifecycleAction.INVALID:
            return HttpReply.json(
                400, encode_action_result(ActionResult(False, "Invalid action"))
            )

        operation = {
            LifecycleAction.START: self.registry.start,
            LifecycleAction.STOP: self.registry.stop,
            LifecycleAction.RESTART: self.registry.restart,
        }[route.action]

        try:
            operation(exe)
        except Exception as exc:
            logger.warning(
                "%s of %s failed: %s", route.action.value, exe.name, exc
            )
            return HttpReply.json(
                500, encode_action_result(ActionResult(False, str(exc)))
            )

        logger.info("%s: %s", _ACTION_MESSAGES[route.action], exe.name)
        return HttpReply.json(
            200,
            encode_action_result(ActionResult(True, _ACTION_MESSAGES[route.action])),
        )
