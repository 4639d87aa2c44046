"""Centralized constants and enums for vcodriver.

Driver defaults, the default workflow catalog, and the vCO REST wire
names are defined here so every module agrees on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Driver URL
# =============================================================================

DRIVER_SCHEME: Final = "vco"
VERSION: Final = "0.1.0"

# =============================================================================
# Waiting
# =============================================================================

DEFAULT_MAX_WAIT: Final = 600.0
DEFAULT_WAIT_INTERVAL: Final = 15.0
DEFAULT_REQUEST_TIMEOUT: Final = 30.0

# =============================================================================
# Workflow Catalog
# =============================================================================


class Operation(StrEnum):
    """Operation tags, each mapped to one workflow template."""

    ALLOCATE = "allocate_machine"
    READY = "ready_machine"
    START = "start_machine"
    STOP = "stop_machine"
    DESTROY = "destroy_machine"
    GET_INFO = "get_machine_info"


DEFAULT_WORKFLOWS: Final[dict[str, dict[str, str]]] = {
    Operation.ALLOCATE: {"name": "allocate_machine", "id": "708bf42d-2eb5-4dec-b511-e8295b66245b"},
    Operation.READY: {"name": "ready_machine", "id": "d2065000-d7cc-4719-be9e-4f7318ccf708"},
    Operation.START: {"name": "start_machine", "id": "d2065000-d7cc-4719-be9e-4f7318ccf708"},
    Operation.STOP: {"name": "stop_machine", "id": "0ff83a4d-c0c4-451f-9077-cf7d58cfb01a"},
    Operation.DESTROY: {"name": "destroy_machine", "id": "14675651-a466-4ef2-b176-8ddc3a0a4bef"},
    Operation.GET_INFO: {"name": "get_machine_info", "id": "ae6fa6e2-7aa7-4cff-81b3-f18f9d9468e9"},
}

# =============================================================================
# vCO REST API
# =============================================================================

API_ROOT: Final = "/vco/api"


class OutputKey(StrEnum):
    """Output parameter names read back from workflow executions."""

    VM_UUIDS = "provisionedVmUuids"
    VM_NAMES = "provisionedVmNames"
    HOST_NAME = "hostName"
    IP_ADDRESS = "ipAddress"
    VM_HOST = "vmHost"
    BOOT_TIME = "bootTime"
    POWER_STATE = "powerState"
    GUEST_STATE = "guestState"
    CLEAN_POWER_OFF = "cleanPowerOff"
    ONLINE_STANDBY = "onlineStandBy"


class GuestState(StrEnum):
    """VMware tools guest states."""

    RUNNING = "running"
    NOT_RUNNING = "notRunning"
    SHUTTING_DOWN = "shuttingDown"
    RESETTING = "resetting"
    STANDBY = "standby"
    UNKNOWN = "unknown"


class PowerState(StrEnum):
    """vSphere virtual machine power states."""

    POWERED_ON = "poweredOn"
    POWERED_OFF = "poweredOff"
    SUSPENDED = "suspended"
