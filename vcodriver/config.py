"""Driver configuration.

``DriverConfig`` is an immutable value object built once when a driver is
constructed. Raw settings come from a mapping (``from_mapping``) or from
TOML files: ``~/.vcodriver/defaults.toml`` (global) deep-merged with
``vcodriver.toml`` (project). Named drivers live under ``[drivers.<name>]``:

    [drivers.lab]
    url = "vco:atom-active:ref2"
    vco_url = "https://vcoserver.example.com:8281/"
    username = "joeuser"
    verify_ssl = false

    [drivers.lab.workflows.allocate_machine]
    name = "allocate_machine"
    id = "708bf42d-2eb5-4dec-b511-e8295b66245b"

Log settings come from the top-level ``[logging]`` table (``resolve_logging``).
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from vcodriver.constants import (
    DEFAULT_MAX_WAIT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_WAIT_INTERVAL,
    DEFAULT_WORKFLOWS,
)
from vcodriver.core.exceptions import ConfigurationError
from vcodriver.logging import LogConfig

if TYPE_CHECKING:
    from vcodriver.driver import Driver

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".vcodriver" / "defaults.toml"
PROJECT_CONFIG_NAME = "vcodriver.toml"
PASSWORD_ENV_VAR = "VCO_PASSWORD"


@dataclass(frozen=True, slots=True)
class WorkflowTemplate:
    """A workflow artifact on the orchestrator, identified by name and id."""

    name: str
    id: str

    @classmethod
    def from_mapping(cls, tag: str, raw: Mapping[str, Any]) -> WorkflowTemplate:
        try:
            return cls(name=str(raw["name"]), id=str(raw["id"]))
        except KeyError as e:
            raise ConfigurationError(f"Workflow '{tag}' missing '{e.args[0]}'") from None


def _default_workflows() -> Mapping[str, WorkflowTemplate]:
    return MappingProxyType({
        tag: WorkflowTemplate.from_mapping(tag, raw) for tag, raw in DEFAULT_WORKFLOWS.items()
    })


def parse_workflows(raw: Mapping[str, Any]) -> dict[str, WorkflowTemplate]:
    result: dict[str, WorkflowTemplate] = {}
    for tag, value in raw.items():
        match value:
            case WorkflowTemplate():
                result[tag] = value
            case Mapping():
                result[tag] = WorkflowTemplate.from_mapping(tag, value)
            case _:
                raise ConfigurationError(f"Workflow '{tag}' must be a table with name and id")
    return result


@dataclass(frozen=True, slots=True)
class DriverConfig:
    """Orchestrator connection and waiting policy.

    Args:
        url: Orchestrator endpoint, e.g. ``https://vco.example.com:8281/``.
        username: vCO user name.
        password: vCO password. Falls back to the VCO_PASSWORD env var.
        verify_ssl: Verify TLS certificates. Default: True.
        max_wait: Seconds to wait for a workflow before giving up. Default: 600.
        wait_interval: Seconds between status polls. Default: 15.
        request_timeout: Per-request HTTP timeout in seconds. Default: 30.
        workflows: Operation tag to workflow template.
    """

    url: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    verify_ssl: bool = True
    max_wait: float = DEFAULT_MAX_WAIT
    wait_interval: float = DEFAULT_WAIT_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    workflows: Mapping[str, WorkflowTemplate] = field(default_factory=_default_workflows)

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("Orchestrator url is required")
        if self.max_wait <= 0:
            raise ConfigurationError(f"max_wait must be positive, got {self.max_wait}")
        if self.wait_interval <= 0:
            raise ConfigurationError(f"wait_interval must be positive, got {self.wait_interval}")
        if not isinstance(self.workflows, MappingProxyType):
            object.__setattr__(self, "workflows", MappingProxyType(dict(self.workflows)))

    @property
    def password_resolved(self) -> str | None:
        return self.password or os.environ.get(PASSWORD_ENV_VAR)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> DriverConfig:
        """Build a config from raw options, merging workflows over the defaults."""
        raw = dict(raw)
        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown driver option(s): {', '.join(sorted(unknown))}. "
                f"Valid: {', '.join(sorted(known))}"
            )
        if "url" not in raw:
            raise ConfigurationError("Orchestrator url is required")

        workflows = {**_default_workflows(), **parse_workflows(raw.pop("workflows", {}))}
        try:
            return cls(
                url=str(raw.pop("url")),
                username=raw.pop("username", None),
                password=raw.pop("password", None),
                verify_ssl=bool(raw.pop("verify_ssl", True)),
                max_wait=float(raw.pop("max_wait", DEFAULT_MAX_WAIT)),
                wait_interval=float(raw.pop("wait_interval", DEFAULT_WAIT_INTERVAL)),
                request_timeout=float(raw.pop("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
                workflows=workflows,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid driver option: {e}") from e

    def with_workflows(self, overrides: Mapping[str, Any]) -> DriverConfig:
        """Return a copy with some workflow templates replaced."""
        if not overrides:
            return self
        return replace(self, workflows={**self.workflows, **parse_workflows(overrides)})

    def template(self, tag: str) -> WorkflowTemplate | None:
        return self.workflows.get(tag)


# =============================================================================
# TOML loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("drivers", {})
    merged.setdefault("logging", {})
    return merged


def resolve_logging(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> LogConfig:
    """Build the log settings from the '[logging]' table."""
    config = load_config(project_dir=project_dir, global_path=global_path)
    return LogConfig.from_mapping(config["logging"])


def resolve_driver(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Driver:
    """Build the driver declared under ``[drivers.<name>]``."""
    from vcodriver.driver import Driver

    config = load_config(project_dir=project_dir, global_path=global_path)
    drivers = config["drivers"]
    if name not in drivers:
        raise ConfigurationError(
            f"Driver '{name}' not found. Available: {', '.join(drivers) or 'none'}"
        )

    raw = dict(drivers[name])
    driver_url = raw.pop("url", None)
    if driver_url is None:
        raise ConfigurationError(f"Driver '{name}' missing 'url' field")
    if "vco_url" in raw:
        raw["url"] = raw.pop("vco_url")

    return Driver.from_url(driver_url, DriverConfig.from_mapping(raw))
