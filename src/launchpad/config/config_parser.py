"""Configuration parsing for Launchpad.

Brief:
  Reads the YAML config file and validates it into typed pydantic models:
    - server.http: control server port and address allow-list
    - ui: status page language and display string overrides
    - logging: passed through to init_logging()
    - executables: the programs the registry manages

Inputs:
  - YAML config paths or already-parsed mappings

Outputs:
  - LaunchpadConfig instances; ConfigError on invalid input
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..registry import ManagedExecutable
from ..servers.codec import PageStrings

DEFAULT_PORT = 8080
DEFAULT_ALLOWED_ADDRESSES = ["localhost", "127.0.0.1"]


class ConfigError(ValueError):
    """Raised when the configuration file cannot be read or is invalid."""


class HttpServerConfig(BaseModel):
    """Brief: server.http block.

    Inputs:
      - port: TCP port for the control server (0 picks a free port).
      - allowed_addresses: IPs, hostnames or ``*`` allowed to connect; the
        server also listens on the local ones.

    Outputs:
      - HttpServerConfig with validated types.
    """

    model_config = ConfigDict(extra="forbid")

    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    allowed_addresses: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ADDRESSES)
    )

    @field_validator("allowed_addresses")
    @classmethod
    def _strip_addresses(cls, value: List[str]) -> List[str]:
        cleaned = [str(v).strip() for v in value if str(v).strip()]
        if not cleaned:
            raise ValueError("allowed_addresses must contain at least one entry")
        return cleaned


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    http: HttpServerConfig = Field(default_factory=HttpServerConfig)


class UiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lang: str = Field(default="en")
    strings: Dict[str, str] = Field(default_factory=dict)

    def page_strings(self) -> PageStrings:
        """Build PageStrings from defaults, lang and string overrides."""

        return PageStrings(lang=self.lang, **self.strings)

    @field_validator("strings")
    @classmethod
    def _known_strings(cls, value: Dict[str, str]) -> Dict[str, str]:
        known = set(PageStrings.model_fields) - {"lang"}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(
                f"unknown display strings {unknown}; expected any of {sorted(known)}"
            )
        return value


class ExecutableConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    path: str = ""
    args: List[str] = Field(default_factory=list)
    working_dir: Optional[str] = None
    auto_start: bool = False

    def to_executable(self) -> ManagedExecutable:
        return ManagedExecutable(
            name=self.name,
            path=self.path,
            args=self.args,
            working_dir=self.working_dir,
            auto_start=self.auto_start,
        )


class LaunchpadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    ui: UiConfig = Field(default_factory=UiConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)
    executables: List[ExecutableConfig] = Field(default_factory=list)


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        lines.append(f"  - {loc}: {err.get('msg')}")
    return "Invalid configuration:\n" + "\n".join(lines)


def parse_config(data: Optional[Mapping[str, Any]]) -> LaunchpadConfig:
    """Brief: Validate an already-parsed config mapping.

    Inputs:
      - data: Mapping from YAML (None is treated as an empty config).

    Outputs:
      - LaunchpadConfig.

    Raises:
      - ConfigError: When the mapping does not match the expected shape.

    Example:
      >>> parse_config({"server": {"http": {"port": 9000}}}).server.http.port
      9000
    """

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration root must be a mapping")
    try:
        return LaunchpadConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc


def load_config(config_path: str) -> LaunchpadConfig:
    """Brief: Read and validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - LaunchpadConfig.

    Raises:
      - ConfigError: When the file cannot be read, is not valid YAML, or
        fails validation.
    """

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read config {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    return parse_config(data)
