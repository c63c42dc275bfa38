"""Wire encoding for the control server.

Brief:
  - JSON payloads for the executable list and lifecycle action results.
  - The status page, rendered from the packaged ``html/index.html`` template
    with localizable display strings.

Display strings reach the page in two contexts: visible markup (HTML-escaped)
and the embedded script's string table (JSON string literals with ``<``, ``>``
and ``&`` escaped so a string can never close the ``<script>`` element).
"""

from __future__ import annotations

import dataclasses
import functools
import html
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..registry import ManagedExecutable


@dataclasses.dataclass(frozen=True)
class ActionResult:
    """Outcome of one lifecycle action, serialized straight into the reply."""

    success: bool
    message: str


class PageStrings(BaseModel):
    """Brief: Localizable display strings for the status page.

    Inputs:
      - lang: Two-letter language code written to ``<html lang>``.
      - remaining fields: Display strings; English defaults.

    Outputs:
      - PageStrings instance; ``script_table()`` returns the strings the
        embedded script uses, keyed by their script names.
    """

    lang: str = Field(default="en")
    title: str = Field(default="Application Management")
    loading: str = Field(default="Loading...")
    refresh: str = Field(default="Refresh")
    error_loading_data: str = Field(default="Error loading data")
    no_applications: str = Field(default="No applications to display")
    not_found: str = Field(default="Not found")
    running: str = Field(default="Running")
    stopped: str = Field(default="Stopped")
    path_not_specified: str = Field(default="Path not specified")
    start: str = Field(default="Start")
    stop: str = Field(default="Stop")
    restart: str = Field(default="Restart")
    error_prefix: str = Field(default="Error: ")

    model_config = ConfigDict(extra="forbid")

    def script_table(self) -> Dict[str, str]:
        return {
            "loading": self.loading,
            "errorLoadingData": self.error_loading_data,
            "noApplications": self.no_applications,
            "notFound": self.not_found,
            "running": self.running,
            "stopped": self.stopped,
            "pathNotSpecified": self.path_not_specified,
            "start": self.start,
            "stop": self.stop,
            "restart": self.restart,
            "errorPrefix": self.error_prefix,
        }


def executables_to_payload(
    executables: Sequence[ManagedExecutable],
) -> List[Dict[str, Any]]:
    """Brief: Convert a registry snapshot into JSON-ready dicts.

    Inputs:
      - executables: Ordered registry snapshot.

    Outputs:
      - list of {id, name, path, isRunning, autoStart, exists}; id is the
        1-based position in the snapshot.
    """

    return [
        {
            "id": index,
            "name": exe.name,
            "path": exe.path,
            "isRunning": bool(exe.is_running),
            "autoStart": bool(exe.auto_start),
            "exists": bool(exe.exists),
        }
        for index, exe in enumerate(executables, start=1)
    ]


def encode_executables(executables: Sequence[ManagedExecutable]) -> str:
    return json.dumps(
        executables_to_payload(executables), indent=2, ensure_ascii=False
    )


def encode_action_result(result: ActionResult) -> str:
    return json.dumps(dataclasses.asdict(result), ensure_ascii=False)


def script_literal(value: str) -> str:
    """Brief: Encode value as a JavaScript string literal safe inside <script>.

    Inputs:
      - value: Arbitrary text.

    Outputs:
      - str: Double-quoted literal; ``<``, ``>``, ``&`` and the U+2028/U+2029
        line separators are written as ``\\uXXXX`` escapes.

    Example:
      >>> script_literal('</script>')
      '"\\\\u003c/script\\\\u003e"'
    """

    text = json.dumps(str(value), ensure_ascii=False)
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


_TOKEN_RE = re.compile(r"@@(?:LANG|TITLE|LOADING|REFRESH|STRINGS)@@")


@functools.lru_cache(maxsize=1)
def _load_page_template() -> str:
    path = Path(__file__).resolve().parent.parent / "html" / "index.html"
    return path.read_text(encoding="utf-8")


def render_status_page(strings: PageStrings | None = None) -> str:
    """Brief: Render the auto-refreshing status page.

    Inputs:
      - strings: Display strings (defaults to English).

    Outputs:
      - str: Complete HTML document.
    """

    strings = strings or PageStrings()
    table = ",\n".join(
        f"            {key}: {script_literal(val)}"
        for key, val in strings.script_table().items()
    )
    replacements = {
        "@@LANG@@": html.escape(strings.lang, quote=True),
        "@@TITLE@@": html.escape(strings.title),
        "@@LOADING@@": html.escape(strings.loading),
        "@@REFRESH@@": html.escape(strings.refresh),
        "@@STRINGS@@": "{\n" + table + "\n        }",
    }

    return _TOKEN_RE.sub(lambda m: replacements[m.group(0)], _load_page_template())
