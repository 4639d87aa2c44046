from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from vcodriver.constants import GuestState, OutputKey, PowerState


def _opt_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _opt_bool(value: Any) -> bool | None:
    match value:
        case bool():
            return value
        case str() if value.lower() in ("true", "false"):
            return value.lower() == "true"
        case _:
            return None


@dataclass(frozen=True, slots=True)
class Instance:
    """Live snapshot of a VM as reported by get_machine_info. Never cached."""

    host_name: str | None = None
    ip_address: str | None = None
    vm_host: str | None = None
    boot_time: str | None = None
    power_state: str | None = None
    guest_state: str | None = None
    clean_power_off: bool | None = None
    online_standby: bool | None = None

    @classmethod
    def from_output_parameters(cls, outputs: Mapping[str, Any]) -> Instance:
        return cls(
            host_name=_opt_str(outputs.get(OutputKey.HOST_NAME)),
            ip_address=_opt_str(outputs.get(OutputKey.IP_ADDRESS)),
            vm_host=_opt_str(outputs.get(OutputKey.VM_HOST)),
            boot_time=_opt_str(outputs.get(OutputKey.BOOT_TIME)),
            power_state=_opt_str(outputs.get(OutputKey.POWER_STATE)),
            guest_state=_opt_str(outputs.get(OutputKey.GUEST_STATE)),
            clean_power_off=_opt_bool(outputs.get(OutputKey.CLEAN_POWER_OFF)),
            online_standby=_opt_bool(outputs.get(OutputKey.ONLINE_STANDBY)),
        )

    @property
    def is_running(self) -> bool:
        return self.guest_state == GuestState.RUNNING

    @property
    def is_stopped(self) -> bool:
        return self.power_state == PowerState.POWERED_OFF

    @property
    def address(self) -> str | None:
        return self.ip_address or self.host_name
