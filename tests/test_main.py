"""
Brief: Tests for the launchpad.main entrypoint.

Inputs:
  - None

Outputs:
  - None
"""

import http.client
import json
import logging
import threading
import time

import pytest

from launchpad import main as main_mod
from launchpad.config.config_parser import parse_config
from launchpad.main import (
    apply_server_settings,
    build_registry,
    build_server,
    wait_for_reload,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def _write_config(tmp_path, port=0, allowed=("127.0.0.1",)):
    path = tmp_path / "config.yaml"
    allowed_yaml = ", ".join(f'"{a}"' for a in allowed)
    path.write_text(
        f"""
server:
  http:
    port: {port}
    allowed_addresses: [{allowed_yaml}]
logging:
  level: debug
  stderr: false
executables:
  - name: First
    path: /definitely/not/here
  - name: Second
    path: /also/missing
""",
        encoding="utf-8",
    )
    return str(path)


def test_main_invalid_config_returns_1(tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("server: {http: {port: -5}}\n", encoding="utf-8")
    assert main_mod.main(["--config", str(path)]) == 1
    assert "server.http.port" in capsys.readouterr().out


def test_main_missing_config_returns_1(tmp_path):
    assert main_mod.main(["--config", str(tmp_path / "nope.yaml")]) == 1


def test_build_server_applies_overrides():
    cfg = parse_config(
        {
            "server": {"http": {"port": 9100, "allowed_addresses": ["10.0.0.1"]}},
            "ui": {"strings": {"title": "Studio"}},
            "executables": [{"name": "a", "path": "/x"}],
        }
    )
    registry = build_registry(cfg)
    assert [e.name for e in registry.executables] == ["a"]

    srv = build_server(cfg, registry)
    assert srv.port == 9100
    assert srv.allowed_addresses == ["10.0.0.1"]
    assert srv.page_strings.title == "Studio"

    srv = build_server(cfg, registry, port=0, allowed=["*"])
    assert srv.port == 0
    assert srv.allowed_addresses == ["*"]


def test_apply_server_settings_restarts_running_server(fake_registry):
    """
    Brief: New HTTP settings take effect by restarting a running server.

    Inputs:
      - fake_registry fixture

    Outputs:
      - None
    """
    cfg = parse_config({"server": {"http": {"port": 0, "allowed_addresses": ["127.0.0.1"]}}})
    srv = build_server(cfg, fake_registry)
    srv.start()
    try:
        new_cfg = parse_config(
            {
                "server": {"http": {"port": 0, "allowed_addresses": ["127.0.0.1"]}},
                "ui": {"strings": {"title": "Renamed"}},
            }
        )
        apply_server_settings(srv, new_cfg)
        assert srv.is_running
        assert srv.page_strings.title == "Renamed"
    finally:
        srv.stop()

    apply_server_settings(srv, cfg)
    assert not srv.is_running


def test_main_serves_until_shutdown(tmp_path, monkeypatch):
    """
    Brief: main() starts the control server and stops cleanly on shutdown.

    Inputs:
      - tmp_path: config location
      - monkeypatch: capture the started server

    Outputs:
      - None
    """
    started = []
    real_build_server = main_mod.build_server

    def capture(*args, **kwargs):
        srv = real_build_server(*args, **kwargs)
        started.append(srv)
        return srv

    monkeypatch.setattr(main_mod, "build_server", capture)
    shutdown = threading.Event()
    result = {}

    t = threading.Thread(
        target=lambda: result.setdefault(
            "code",
            main_mod.main(["--config", _write_config(tmp_path)], shutdown_event=shutdown),
        ),
        daemon=True,
    )
    t.start()

    deadline = time.time() + 5
    while time.time() < deadline and not (started and started[0].is_running):
        time.sleep(0.02)
    assert started and started[0].is_running

    host, port = started[0].bound_addresses[0]
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request("GET", "/api/executables")
        resp = conn.getresponse()
        items = json.loads(resp.read())
    finally:
        conn.close()
    assert [(i["id"], i["name"], i["exists"]) for i in items] == [
        (1, "First", False),
        (2, "Second", False),
    ]

    shutdown.set()
    t.join(5)
    assert result["code"] == 0
    assert not started[0].is_running


def test_main_bind_failure_returns_1(tmp_path):
    assert (
        main_mod.main(["--config", _write_config(tmp_path, allowed=("192.0.2.55",))])
        == 1
    )


def _events(shutdown=False, reload=False, terminate=False):
    events = [threading.Event() for _ in range(3)]
    for ev, flag in zip(events, (shutdown, reload, terminate)):
        if flag:
            ev.set()
    return events


def test_wait_for_reload_runs_pending_reload():
    shutdown, reload_requested, terminate = _events(shutdown=True, reload=True)
    assert wait_for_reload(shutdown, reload_requested, terminate) is True
    assert not shutdown.is_set()
    assert not reload_requested.is_set()


def test_wait_for_reload_terminate_wins_over_pending_reload():
    """
    Brief: SIGHUP followed by SIGTERM before the loop wakes still shuts down.

    Inputs:
      - None

    Outputs:
      - None
    """
    shutdown, reload_requested, terminate = _events(
        shutdown=True, reload=True, terminate=True
    )
    assert wait_for_reload(shutdown, reload_requested, terminate) is False
    assert shutdown.is_set()


def test_wait_for_reload_plain_shutdown():
    shutdown, reload_requested, terminate = _events(shutdown=True)
    assert wait_for_reload(shutdown, reload_requested, terminate) is False
