"""Embedded HTTP control server for Launchpad.

This module owns the listening sockets and their lifecycle. A single
background thread waits on every listener at once and hands each accepted
connection to its own handler thread (``socketserver.ThreadingMixIn``), so a
slow request can never hold up the next accept.

``HttpControlServer.start()``/``stop()`` may be called from any thread (for
example a settings dialog) while the accept loop is running.
"""

from __future__ import annotations

import contextlib
import enum
import errno
import http.server
import logging
import selectors
import socket
import socketserver
import threading
import time
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..registry import ExecutableRegistry
from .access_filter import WILDCARD, AddressFilter, parse_ip, resolve_host
from .codec import PageStrings
from .routing import ControlRouter, HttpReply

logger = logging.getLogger("launchpad.webserver")

DEFAULT_PORT = 8080
DEFAULT_ALLOWED_ADDRESSES: Tuple[str, ...] = ("localhost", "127.0.0.1")

CORS_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET, POST, OPTIONS"),
    ("Access-Control-Allow-Headers", "Content-Type"),
)

# Request bodies are never used; read at most this much so the client is not
# reset before it sees the response.
_MAX_DRAIN_BYTES = 1024 * 1024


class ServerState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


def bind_addresses(entries: Iterable[str]) -> List[Tuple[str, int]]:
    """Brief: Translate allow-list entries into (host, address_family) binds.

    Inputs:
      - entries: Allow-list entries (IP literals, hostnames, ``*``).

    Outputs:
      - list of unique (host, family) tuples, in entry order.

    Notes:
      - ``*`` yields a single any-address bind and supersedes every other
        entry, since specific binds on the same port would collide with it.
      - Hostnames are resolved to their IPv4 addresses; names that do not
        resolve are skipped with a warning.

    Example:
      >>> bind_addresses(["127.0.0.1", "127.0.0.1"])
      [('127.0.0.1', <AddressFamily.AF_INET: 2>)]
    """

    cleaned = [str(e).strip() for e in entries if e is not None and str(e).strip()]
    if WILDCARD in cleaned:
        return [("0.0.0.0", socket.AF_INET)]

    out: List[Tuple[str, int]] = []
    for entry in cleaned:
        ip = parse_ip(entry)
        if ip is not None:
            candidates = [ip]
        else:
            try:
                candidates = [a for a in resolve_host(entry) if a.version == 4]
            except (OSError, UnicodeError) as exc:
                logger.warning("Skipping unresolvable allow-list host %s: %s", entry, exc)
                continue
            if not candidates:
                logger.warning("Allow-list host %s has no IPv4 address", entry)
                continue

        for candidate in candidates:
            family = socket.AF_INET6 if candidate.version == 6 else socket.AF_INET
            item = (str(candidate), family)
            if item not in out:
                out.append(item)
    return out


class _CancelSignal:
    """Brief: Cancellation flag the accept loop can wait on with select().

    A threading.Event paired with a socket pair; cancel() sets the event and
    makes the read end readable so a blocked select() returns at once.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)

    def fileno(self) -> int:
        return self._reader.fileno()

    def is_set(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
        try:
            self._writer.send(b"\0")
        except OSError:
            pass  # already closed or buffer full; the event is what matters

    def close(self) -> None:
        for sock in (self._reader, self._writer):
            with contextlib.suppress(OSError):
                sock.close()


class _ControlHTTPServer(http.server.ThreadingHTTPServer):
    """ThreadingHTTPServer carrying the router and address filter for one bind.

    Inputs (constructor):
      - server_address: (host, port) tuple
      - address_family: socket.AF_INET or socket.AF_INET6
      - router: ControlRouter shared by every listener of one start()
      - address_filter: AddressFilter snapshot taken at start()

    Outputs:
      - Bound and listening server. serve_forever() is never used; the
        HttpControlServer accept loop drives get_request()/process_request().
    """

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 64
    # server_close() must not wait for in-flight handler threads.
    block_on_close = False

    def __init__(
        self,
        server_address: Tuple[str, int],
        address_family: int,
        router: ControlRouter,
        address_filter: AddressFilter,
    ) -> None:
        self.address_family = address_family
        self.router = router
        self.address_filter = address_filter
        super().__init__(server_address, _ControlRequestHandler)

    def server_bind(self) -> None:
        # HTTPServer.server_bind() does a reverse DNS lookup via getfqdn().
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = int(port)

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.exception("Error handling connection from %s", client_address)

    def shutdown_listener(self) -> None:
        """Wake any thread blocked in accept() and close the socket."""

        with contextlib.suppress(OSError):
            self.socket.shutdown(socket.SHUT_RDWR)
        self.server_close()


class _PendingResponse:
    def __init__(self) -> None:
        self.reply: HttpReply = HttpReply.empty(500)
        self.cors = False


class _ControlRequestHandler(http.server.BaseHTTPRequestHandler):
    """Brief: Per-connection handler: address filter, CORS, routing, reply.

    Inputs:
      - Inherits request/connection attributes from BaseHTTPRequestHandler.

    Outputs:
      - Exactly one response per request, written by _response() on exit.
    """

    server_version = "Launchpad"
    protocol_version = "HTTP/1.1"
    # Seconds a client may stall while sending its request.
    timeout = 10

    def _server(self) -> _ControlHTTPServer:
        return self.server  # type: ignore[return-value]

    def _client_ip(self) -> Optional[str]:
        addr = getattr(self, "client_address", None)
        if isinstance(addr, tuple) and addr:
            return str(addr[0])
        return None

    @contextlib.contextmanager
    def _response(self) -> Iterator[_PendingResponse]:
        """Brief: Scope that always writes the pending reply exactly once.

        Exceptions raised inside the scope replace the reply with a 500
        plain-text response carrying the exception text.
        """

        pending = _PendingResponse()
        try:
            yield pending
        except Exception as exc:
            logger.exception("Unhandled error serving %s %s", self.command, self.path)
            pending.reply = HttpReply.text(500, f"Internal Server Error: {exc}")
        finally:
            self._write_reply(pending)

    def _write_reply(self, pending: _PendingResponse) -> None:
        reply = pending.reply
        self.close_connection = True
        try:
            self.send_response(reply.status)
            if reply.content_type:
                self.send_header("Content-Type", reply.content_type)
            self.send_header("Content-Length", str(len(reply.body)))
            self.send_header("Connection", "close")
            if pending.cors:
                for name, value in CORS_HEADERS:
                    self.send_header(name, value)
            self.end_headers()
            if reply.body and self.command != "HEAD":
                self.wfile.write(reply.body)
        except (BrokenPipeError, ConnectionResetError):
            logger.warning(
                "Client disconnected while sending response for %s %s",
                getattr(self, "command", "GET"),
                getattr(self, "path", ""),
            )

    def _drain_body(self) -> None:
        try:
            length = int(self.headers.get("Content-Length", "0") or "0")
        except ValueError:
            return
        if length > 0:
            self.rfile.read(min(length, _MAX_DRAIN_BYTES))

    def _dispatch(self) -> None:
        server = self._server()
        with self._response() as response:
            client_ip = self._client_ip()
            if not server.address_filter.is_allowed(client_ip):
                logger.info("Rejected %s %s from %s", self.command, self.path, client_ip)
                response.reply = HttpReply.empty(403)
                return

            response.cors = True
            self._drain_body()
            if self.command == "OPTIONS":
                response.reply = HttpReply.empty(200)
                return

            response.reply = server.router.handle(self.command, self.path)

    # ---------- HTTP verb handlers ----------

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch()

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch()

    def do_OPTIONS(self) -> None:  # noqa: N802
        self._dispatch()

    def do_HEAD(self) -> None:  # noqa: N802
        self._dispatch()

    def __getattr__(self, name: str) -> Any:
        # Every other method (PUT, TRACE, PROPFIND, ...) is dispatched too.
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        """Route http.server access/error lines through the module logger."""

        try:
            msg = format % args
        except Exception:
            msg = format
        logger.debug("%s - %s", self.address_string(), msg)


class HttpControlServer:
    """Brief: Lifecycle owner for the control server's listeners.

    Inputs (constructor):
      - registry: ExecutableRegistry exposed over HTTP.
      - port: TCP port for every listener (0 picks a free port).
      - allowed_addresses: Allow-list entries; also decides the bind addresses.
      - page_strings: Display strings for the status page.
      - join_timeout: Seconds stop() waits for the accept thread.
      - restart_grace: Seconds start() sleeps after force-stopping leftovers.

    Outputs:
      - HttpControlServer with start(), stop() and context-manager support.

    Example:
      >>> srv = HttpControlServer(registry, port=8080)
      >>> srv.start()
      >>> srv.url
      'http://localhost:8080/'
      >>> srv.stop()
    """

    def __init__(
        self,
        registry: ExecutableRegistry,
        port: int = DEFAULT_PORT,
        allowed_addresses: Optional[Sequence[str]] = None,
        page_strings: Optional[PageStrings] = None,
        join_timeout: float = 2.0,
        restart_grace: float = 0.1,
    ) -> None:
        self.registry = registry
        self.port = int(port)
        if allowed_addresses is None:
            allowed_addresses = DEFAULT_ALLOWED_ADDRESSES
        self.allowed_addresses: List[str] = list(allowed_addresses)
        self.page_strings = page_strings or PageStrings()
        self.join_timeout = float(join_timeout)
        self.restart_grace = float(restart_grace)

        self._lock = threading.RLock()
        self._state = ServerState.STOPPED
        self._listeners: List[_ControlHTTPServer] = []
        self._accept_thread: Optional[threading.Thread] = None
        self._cancel: Optional[_CancelSignal] = None

    # ---------- Introspection ----------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ServerState.RUNNING

    @property
    def bound_addresses(self) -> List[Tuple[str, int]]:
        """(host, port) of every active listener; empty when stopped."""

        with self._lock:
            return [
                (str(l.server_address[0]), int(l.server_address[1]))
                for l in self._listeners
            ]

    @property
    def url(self) -> Optional[str]:
        bound = self.bound_addresses
        if not bound:
            return None
        host, port = bound[0]
        if host in ("0.0.0.0", "::"):
            host = "localhost"
        elif ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}/"

    # ---------- Lifecycle ----------

    def start(self) -> None:
        """Brief: Bind the listeners and launch the accept loop.

        Inputs: none
        Outputs: None. Raises OSError when binding fails; the server is then
        left stopped with no partially created listeners.
        """

        with self._lock:
            if self._state is ServerState.RUNNING:
                return

            if self._listeners or self._accept_thread is not None:
                self._stop_locked()
                time.sleep(self.restart_grace)

            entries = tuple(self.allowed_addresses)
            address_filter = AddressFilter(entries)
            router = ControlRouter(self.registry, self.page_strings)
            cancel = _CancelSignal()
            listeners: List[_ControlHTTPServer] = []
            try:
                port = self.port
                for host, family in bind_addresses(entries):
                    try:
                        listener = _ControlHTTPServer(
                            (host, port), family, router, address_filter
                        )
                    except OSError as exc:
                        # Allow-list entries naming other machines cannot be bound
                        # locally; they still act as client filters.
                        if exc.errno == errno.EADDRNOTAVAIL:
                            logger.warning(
                                "Not listening on %s: address not available on this host",
                                host,
                            )
                            continue
                        raise
                    listeners.append(listener)
                    # Port 0: every further listener reuses the first one's port.
                    port = int(listener.server_address[1])

                if not listeners:
                    raise OSError(
                        errno.EADDRNOTAVAIL,
                        f"No local address to listen on for allow-list {list(entries)!r}",
                    )
            except Exception as exc:
                logger.error(
                    "Failed to start control server on port %d: %s", self.port, exc
                )
                for listener in listeners:
                    with contextlib.suppress(Exception):
                        listener.server_close()
                cancel.close()
                self._state = ServerState.STOPPED
                raise

            self._listeners = listeners
            self._cancel = cancel
            self._state = ServerState.RUNNING

            thread = threading.Thread(
                target=self._accept_loop,
                args=(listeners, cancel),
                name="launchpad-accept",
                daemon=True,
            )
            self._accept_thread = thread
            thread.start()

            logger.info(
                "Started control server on %s",
                ", ".join(f"{h}:{p}" for h, p in self.bound_addresses),
            )

    def stop(self) -> None:
        """Brief: Stop accepting, close every listener, join the accept loop.

        Inputs: none
        Outputs: None. Never raises; calling it while stopped is a no-op.
        """

        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if (
            self._state is ServerState.STOPPED
            and not self._listeners
            and self._accept_thread is None
        ):
            return

        # The accept loop checks the state on every iteration.
        self._state = ServerState.STOPPING
        cancel, self._cancel = self._cancel, None
        listeners, self._listeners = self._listeners, []
        thread, self._accept_thread = self._accept_thread, None

        if cancel is not None:
            try:
                cancel.cancel()
            except Exception:
                logger.debug("Error cancelling accept loop", exc_info=True)

        for listener in listeners:
            try:
                listener.shutdown_listener()
            except Exception:
                logger.debug("Error closing listener", exc_info=True)

        if thread is not None and thread is not threading.current_thread():
            try:
                thread.join(timeout=self.join_timeout)
                if thread.is_alive():
                    logger.warning(
                        "Accept loop did not exit within %.1fs", self.join_timeout
                    )
            except Exception:
                logger.debug("Error joining accept loop", exc_info=True)

        if cancel is not None:
            cancel.close()

        self._state = ServerState.STOPPED
        logger.info("Stopped control server")

    def _accept_loop(
        self, listeners: Sequence[_ControlHTTPServer], cancel: _CancelSignal
    ) -> None:
        """Brief: Wait on all listeners and dispatch each connection.

        Inputs:
          - listeners: Listeners created by the start() that launched this loop.
          - cancel: Cancellation signal shared with stop().

        Outputs:
          - None. Returns when stop() runs or the listeners are closed.
        """

        def _stopping() -> bool:
            return cancel.is_set() or self._state is not ServerState.RUNNING

        try:
            selector = selectors.DefaultSelector()
            selector.register(cancel, selectors.EVENT_READ)
            for listener in listeners:
                selector.register(listener, selectors.EVENT_READ)
        except (OSError, ValueError):
            # stop() ran before the loop got going
            return

        with selector:
            while not _stopping():
                try:
                    ready = selector.select()
                    for key, _events in ready:
                        if key.fileobj is cancel or _stopping():
                            break
                        self._accept_one(key.fileobj)  # type: ignore[arg-type]
                except (OSError, ValueError):
                    if _stopping():
                        break
                    logger.exception("Error in control server accept loop")
                except Exception:
                    logger.exception("Error in control server accept loop")

    @staticmethod
    def _accept_one(listener: _ControlHTTPServer) -> None:
        request, client_address = listener.get_request()
        try:
            listener.process_request(request, client_address)
        except Exception:
            listener.shutdown_request(request)
            raise

    # ---------- Context manager ----------

    def __enter__(self) -> "HttpControlServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
