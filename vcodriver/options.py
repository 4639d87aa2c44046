"""Per-machine options, validated once at the driver boundary."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any

from vcodriver.core.exceptions import ConfigurationError

_NESTED_KEYS = ("bootstrap_options", "vco_options")


def _opt_int(name: str, value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Machine option '{name}' must be an integer, got {value!r}") from None


@dataclass(frozen=True, slots=True)
class MachineOptions:
    """Options recognised for allocate/ready/start/stop/destroy.

    Args:
        reservation_policy: vRA reservation policy.
        environment: Environment passed to the allocation workflow.
        on_behalf_of: User the request is made on behalf of.
        location: vRA location.
        component: Blueprint component.
        cpu: Core count.
        ram: Memory in MB.
        image: Template/image name.
        is_windows: Connect over WinRM and converge with the MSI installer.
        ssh_username: SSH user for the machine handle.
        sudo: Run commands through sudo.
        ssh_gateway: SSH gateway host (``user@host:port``).
        cached_installer: Converge with the cached installer.
        workflows: Per-machine workflow template overrides.
    """

    reservation_policy: str | None = None
    environment: str | None = None
    on_behalf_of: str | None = None
    location: str | None = None
    component: str | None = None
    cpu: int | None = None
    ram: int | None = None
    image: str | None = None
    is_windows: bool = False
    ssh_username: str | None = None
    sudo: bool = False
    ssh_gateway: str | None = None
    cached_installer: bool = False
    workflows: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> MachineOptions:
        """Accept the flat form and the nested ``bootstrap_options`` form.

        ``vco_options.workflows`` is read as the per-machine template
        override table.
        """
        if not raw:
            return cls()

        flat: dict[str, Any] = {
            str(k): v for k, v in raw.items() if k not in _NESTED_KEYS
        }
        flat.update({str(k): v for k, v in (raw.get("bootstrap_options") or {}).items()})
        vco_options = raw.get("vco_options") or {}
        stray = set(vco_options) - {"workflows"}
        if stray:
            raise ConfigurationError(
                f"Unknown vco_options key(s): {', '.join(sorted(map(str, stray)))}. "
                "Driver settings belong in the driver config; only 'workflows' is per machine"
            )
        vco_workflows = vco_options.get("workflows")
        if vco_workflows:
            flat["workflows"] = {**vco_workflows, **flat.get("workflows", {})}

        known = {f.name for f in fields(cls)}
        unknown = set(flat) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown machine option(s): {', '.join(sorted(unknown))}. "
                f"Valid: {', '.join(sorted(known))}"
            )

        return cls(
            **{k: v for k, v in flat.items() if k not in ("cpu", "ram", "workflows")},
            cpu=_opt_int("cpu", flat.get("cpu")),
            ram=_opt_int("ram", flat.get("ram")),
            workflows=MappingProxyType(dict(flat.get("workflows") or {})),
        )
