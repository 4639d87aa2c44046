"""vcodriver - machine lifecycle driver for vRealize Orchestrator.

Example:

    from vcodriver import Driver, InMemoryMachineSpec

    driver = Driver.from_url("vco:atom-active:ref2", {
        "url": "https://vcoserver.example.com:8281/",
        "username": "joeuser",
        "password": "...",
    })

    spec = InMemoryMachineSpec(name="int-webserver-1")
    await driver.allocate(spec, {"cpu": 1, "ram": 512, "location": "uswest"})
    machine = await driver.ready(spec)
"""

from vcodriver.config import (
    DriverConfig,
    WorkflowTemplate,
    load_config,
    resolve_driver,
    resolve_logging,
)
from vcodriver.constants import VERSION as __version__
from vcodriver.constants import Operation
from vcodriver.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    DriverMismatchError,
    InstanceNotReadyError,
    LifecycleError,
    MultipleVMsProvisionedError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    ReferenceConsistencyError,
    TemplateNotFoundError,
    VcoDriverError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from vcodriver.driver import Driver
from vcodriver.instance import Instance
from vcodriver.logging import LogConfig, setup_logging, teardown_logging
from vcodriver.machine import (
    Convergence,
    MachineHandle,
    SshTransport,
    WinRmTransport,
    assemble,
)
from vcodriver.options import MachineOptions
from vcodriver.reference import (
    InMemoryMachineSpec,
    JsonMachineSpec,
    MachineReference,
    MachineSpec,
    ReferenceStore,
)
from vcodriver.workflow import ExecutionHandle, ExecutionState, WorkflowClient, wait_for

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "ConnectionError",
    "Convergence",
    "Driver",
    "DriverConfig",
    "DriverMismatchError",
    "ExecutionHandle",
    "ExecutionState",
    "InMemoryMachineSpec",
    "Instance",
    "InstanceNotReadyError",
    "JsonMachineSpec",
    "LifecycleError",
    "LogConfig",
    "MachineHandle",
    "MachineOptions",
    "MachineReference",
    "MachineSpec",
    "MultipleVMsProvisionedError",
    "Operation",
    "ProvisioningFailedError",
    "ProvisioningTimeoutError",
    "ReferenceConsistencyError",
    "ReferenceStore",
    "SshTransport",
    "TemplateNotFoundError",
    "VcoDriverError",
    "WinRmTransport",
    "WorkflowClient",
    "WorkflowFailedError",
    "WorkflowTemplate",
    "WorkflowTimeoutError",
    "__version__",
    "assemble",
    "load_config",
    "resolve_driver",
    "resolve_logging",
    "setup_logging",
    "teardown_logging",
    "wait_for",
]
