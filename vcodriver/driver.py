"""Lifecycle driver: allocate, ready, start, stop and destroy machines
through vRealize Orchestrator workflows.

Every operation reads the machine reference, decides from it (and, where
needed, from the orchestrator) whether remote work is required, submits at
most one workflow, and persists the new execution identity before waiting
on it, so a restarted process resumes polling instead of resubmitting.

Driver URLs have the form ``vco:<tenant>:<business_unit>``::

    driver = Driver.from_url("vco:atom-active:ref2", {
        "url": "https://vcoserver.example.com:8281/",
        "username": "joeuser",
        "password": "...",
        "verify_ssl": False,
    })
    await driver.allocate(spec, {"cpu": 2, "ram": 4096, "image": "centos7"})
    machine = await driver.ready(spec)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from loguru import logger

from vcodriver.config import DriverConfig, WorkflowTemplate
from vcodriver.constants import DRIVER_SCHEME, VERSION, Operation, OutputKey
from vcodriver.core.exceptions import (
    ConfigurationError,
    DriverMismatchError,
    InstanceNotReadyError,
    LifecycleError,
    MultipleVMsProvisionedError,
    ProvisioningFailedError,
    ProvisioningTimeoutError,
    ReferenceConsistencyError,
    VcoDriverError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from vcodriver.instance import Instance
from vcodriver.machine import MachineHandle, assemble
from vcodriver.options import MachineOptions
from vcodriver.reference import (
    MachineReference,
    MachineSpec,
    ReferenceStore,
    utc_timestamp,
)
from vcodriver.workflow.client import WorkflowClient
from vcodriver.workflow.poller import wait_for
from vcodriver.workflow.types import ExecutionHandle

type Options = MachineOptions | Mapping[str, Any] | None


def parse_driver_url(driver_url: str) -> tuple[str, str]:
    """Split ``vco:<tenant>:<business_unit>`` into (tenant, business_unit)."""
    parts = driver_url.split(":")
    match parts:
        case [scheme, tenant, business_unit] if scheme == DRIVER_SCHEME and tenant and business_unit:
            return tenant, business_unit
        case _:
            raise ConfigurationError(
                f"Invalid driver url '{driver_url}', expected '{DRIVER_SCHEME}:<tenant>:<business_unit>'"
            )


def _as_list(value: Any) -> list[str]:
    match value:
        case None | "":
            return []
        case str():
            return [value]
        case Sequence():
            return [str(v) for v in value if v not in (None, "")]
        case _:
            return [str(value)]


class Driver:
    """Machine lifecycle driver for one tenant/business-unit pair.

    Operations on different machines may run concurrently; operations on
    the same machine must be serialized by the caller.
    """

    def __init__(
        self,
        driver_url: str,
        config: DriverConfig,
        *,
        client: WorkflowClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._driver_url = driver_url
        self._tenant, self._business_unit = parse_driver_url(driver_url)
        self._config = config
        self._client = client or WorkflowClient(config)
        self._sleep = sleep
        self._log = logger.bind(component="driver", tenant=self._tenant)

    @classmethod
    def from_url(cls, driver_url: str, config: DriverConfig | Mapping[str, Any]) -> Driver:
        """Build a driver, accepting raw options (optionally nested under ``vco_options``)."""
        if not isinstance(config, DriverConfig):
            raw = config.get("vco_options", config)
            config = DriverConfig.from_mapping(raw)
        return cls(driver_url, config)

    @staticmethod
    def canonicalize_url(driver_url: str, config: Any) -> tuple[str, Any]:
        parse_driver_url(driver_url)
        return driver_url, config

    @property
    def driver_url(self) -> str:
        return self._driver_url

    @property
    def tenant(self) -> str:
        return self._tenant

    @property
    def business_unit(self) -> str:
        return self._business_unit

    @property
    def config(self) -> DriverConfig:
        return self._config

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _operation(self, machine: str, operation: str) -> Iterator[None]:
        """Tag transport and configuration errors with machine and operation."""
        try:
            yield
        except LifecycleError:
            raise
        except VcoDriverError as e:
            e.add_note(f"while running {operation} for machine {machine}")
            raise

    def _load(
        self, spec: MachineSpec, operation: str, options: Options
    ) -> tuple[ReferenceStore, MachineReference, MachineOptions, Mapping[str, WorkflowTemplate]]:
        opts = options if isinstance(options, MachineOptions) else MachineOptions.from_mapping(options)
        store = ReferenceStore(spec, operation=operation)
        reference = store.read()
        if reference.driver_url and reference.driver_url != self._driver_url:
            raise DriverMismatchError(
                spec.name, operation,
                f"reference belongs to driver '{reference.driver_url}', not '{self._driver_url}'",
            )
        templates = self._config.with_workflows(opts.workflows).workflows
        return store, reference, opts, templates

    async def _wait(self, handle: ExecutionHandle) -> ExecutionHandle:
        return await wait_for(
            handle,
            self._client.query,
            max_wait=self._config.max_wait,
            poll_interval=self._config.wait_interval,
            sleep=self._sleep,
        )

    @staticmethod
    def _execution_of(
        name: str, operation: str, reference: MachineReference
    ) -> tuple[str, str]:
        if not reference.workflow_id or not reference.execution_id:
            raise ReferenceConsistencyError(name, operation, "reference holds no execution")
        return reference.workflow_id, reference.execution_id

    @staticmethod
    def _vm_parameters(reference: MachineReference) -> dict[str, Any]:
        return {"vmName": reference.vm_name, "vmUuid": reference.vm_uuid}

    # =========================================================================
    # Allocate
    # =========================================================================

    async def building(self, spec: MachineSpec) -> ExecutionHandle | None:
        """Return the allocation execution if one is still in flight."""
        with self._operation(spec.name, "building"):
            _, reference, _, _ = self._load(spec, "building", None)
            if reference.provisioned or not reference.has_execution:
                return None
            handle = await self._client.query(*self._execution_of(spec.name, "building", reference))
            return handle if handle.alive else None

    async def allocate(self, spec: MachineSpec, options: Options = None) -> MachineSpec:
        """Submit the allocation workflow without waiting for it.

        Re-entrant: a provisioned machine is started instead, an allocation
        still in flight is left alone, and a failed one is resubmitted.
        """
        name = spec.name
        with self._operation(name, Operation.ALLOCATE):
            store, reference, opts, templates = self._load(spec, Operation.ALLOCATE, options)
            log = self._log.bind(machine=name)
            log.info(
                "Create {name} with template {image}, tenant {tenant}, business unit {bu}",
                name=name, image=opts.image, tenant=self._tenant, bu=self._business_unit,
            )

            if reference.provisioned:
                log.info("{name} already provisioned as {uuid}, ensuring it is running",
                         name=name, uuid=reference.vm_uuid)
                await self.start(spec, opts)
                return spec

            if reference.has_execution:
                prior = await self._client.query(
                    *self._execution_of(name, Operation.ALLOCATE, reference)
                )
                if prior.alive:
                    log.info("{name} is still being built by execution {execution}",
                             name=name, execution=prior.execution_id)
                    return spec
                if prior.failed:
                    log.warning(
                        "Previous allocation {execution} of {name} failed, submitting again",
                        execution=prior.execution_id, name=name,
                    )
                    store.write(MachineReference())
                else:
                    log.info(
                        "Allocation {execution} of {name} ended {state}, leaving it for ready",
                        execution=prior.execution_id, name=name, state=prior.state,
                    )
                    return spec

            parameters = {
                "nodename": name,
                "tenant": self._tenant,
                "businessUnit": self._business_unit,
                "reservationPolicy": opts.reservation_policy,
                "environment": opts.environment,
                "onBehalfOf": opts.on_behalf_of,
                "location": opts.location,
                "component": opts.component,
                "coreCount": opts.cpu,
                "ramMB": opts.ram,
                "image": opts.image,
            }
            log.debug("Creating instance with options {opts}", opts=opts)
            handle = await self._client.submit(Operation.ALLOCATE, parameters, templates=templates)

            store.write(
                MachineReference(
                    driver_url=self._driver_url,
                    driver_version=VERSION,
                    vco_url=self._config.url,
                    allocated_at=utc_timestamp(),
                    is_windows=opts.is_windows,
                    ssh_username=opts.ssh_username,
                    sudo=opts.sudo,
                    ssh_gateway=opts.ssh_gateway,
                    cpu=opts.cpu,
                    ram=opts.ram,
                    image=opts.image,
                ).with_execution(
                    Operation.ALLOCATE, handle.workflow_id, handle.name, handle.execution_id
                )
            )
            log.info("Allocation of {name} submitted as execution {execution}",
                     name=name, execution=handle.execution_id)
            return spec

    # =========================================================================
    # Ready
    # =========================================================================

    @staticmethod
    def _provisioned_vm(name: str, operation: str, handle: ExecutionHandle) -> tuple[str, str]:
        uuids = _as_list(handle.output(OutputKey.VM_UUIDS) or handle.output("provisionedVmUuid"))
        names = _as_list(handle.output(OutputKey.VM_NAMES) or handle.output("provisionedVmName"))

        if len(uuids) > 1 or len(names) > 1:
            raise MultipleVMsProvisionedError(
                name, operation,
                f"execution {handle.execution_id} provisioned {max(len(uuids), len(names))} VMs "
                f"(uuids={uuids}, names={names})",
            )
        if len(uuids) != len(names):
            raise ReferenceConsistencyError(
                name, operation,
                f"execution {handle.execution_id} returned {len(names)} VM name(s) "
                f"but {len(uuids)} uuid(s)",
            )
        if not uuids:
            raise ProvisioningFailedError(
                name, operation,
                f"execution {handle.execution_id} completed without reporting a VM",
                execution_id=handle.execution_id,
            )
        return names[0], uuids[0]

    async def ready(self, spec: MachineSpec, options: Options = None) -> MachineHandle:
        """Wait for allocation, make sure the VM runs, and return a handle to it."""
        name = spec.name
        with self._operation(name, Operation.READY):
            store, reference, opts, templates = self._load(spec, Operation.READY, options)
            log = self._log.bind(machine=name)
            log.info("Making {name} ready", name=name)

            if not reference.provisioned:
                if not reference.has_execution:
                    raise ReferenceConsistencyError(
                        name, Operation.READY, "machine has not been allocated"
                    )
                handle = await self._client.query(
                    *self._execution_of(name, Operation.READY, reference)
                )
                handle = await self._wait(handle)

                if handle.failed:
                    raise ProvisioningFailedError(
                        name, Operation.READY,
                        f"allocation execution {handle.execution_id} failed"
                        + (f": {handle.error}" if handle.error else ""),
                        execution_id=handle.execution_id,
                    )
                if handle.alive:
                    raise ProvisioningTimeoutError(
                        name, Operation.READY,
                        f"allocation execution {handle.execution_id} still {handle.state} "
                        f"after {self._config.max_wait:.0f}s",
                        execution_id=handle.execution_id,
                    )
                if not handle.completed:
                    raise ProvisioningFailedError(
                        name, Operation.READY,
                        f"allocation execution {handle.execution_id} ended in state {handle.state}",
                        execution_id=handle.execution_id,
                    )

                vm_name, vm_uuid = self._provisioned_vm(name, Operation.READY, handle)
                reference = store.write(reference.with_vm(vm_name, vm_uuid))
                log.info("{name} provisioned as {vm} ({uuid})", name=name, vm=vm_name, uuid=vm_uuid)

            instance = await self._instance(name, reference, templates)
            if instance is not None and not instance.is_running:
                log.info("{name} is {state}, starting it", name=name, state=instance.guest_state)
                await self.start(spec, opts, wait=True)
                reference = store.read()
                instance = await self._instance(name, reference, templates)

            return assemble(name, reference, instance, opts, operation=Operation.READY)

    async def connect(self, spec: MachineSpec, options: Options = None) -> MachineHandle:
        """Build a handle to an existing machine without changing or waiting on anything."""
        name = spec.name
        with self._operation(name, "connect"):
            _, reference, opts, templates = self._load(spec, "connect", options)
            instance = await self._instance(name, reference, templates)
            return assemble(name, reference, instance, opts)

    # =========================================================================
    # Instance info
    # =========================================================================

    async def instance_for(self, spec: MachineSpec, options: Options = None) -> Instance | None:
        """Fetch a fresh snapshot of the machine's VM, or None if there is none."""
        with self._operation(spec.name, Operation.GET_INFO):
            _, reference, _, templates = self._load(spec, Operation.GET_INFO, options)
            return await self._instance(spec.name, reference, templates)

    async def _instance(
        self,
        name: str,
        reference: MachineReference,
        templates: Mapping[str, WorkflowTemplate],
    ) -> Instance | None:
        if not reference.vm_name and not reference.vm_uuid:
            return None

        handle = await self._client.submit(
            Operation.GET_INFO, self._vm_parameters(reference), templates=templates
        )
        handle = await self._wait(handle)

        if handle.failed:
            self._log.bind(machine=name).debug(
                "get_machine_info for {vm} failed, treating as no instance", vm=reference.vm_name
            )
            return None
        if handle.alive:
            raise WorkflowTimeoutError(
                name, Operation.GET_INFO,
                f"execution {handle.execution_id} still {handle.state} "
                f"after {self._config.max_wait:.0f}s",
                execution_id=handle.execution_id,
            )
        return Instance.from_output_parameters(handle.output_parameters)

    # =========================================================================
    # Power and destroy
    # =========================================================================

    async def _settle_allocation(
        self,
        name: str,
        operation: Operation,
        store: ReferenceStore,
        reference: MachineReference,
    ) -> MachineReference:
        """Record the VM of a finished allocation that ready has not picked up yet.

        Raises InstanceNotReadyError while the allocation is still running, so
        an unresolved build is never mistaken for a machine that does not exist.
        """
        if reference.provisioned or not reference.has_execution:
            return reference
        handle = await self._client.query(*self._execution_of(name, operation, reference))
        if handle.alive:
            raise InstanceNotReadyError(
                name, operation,
                f"allocation execution {handle.execution_id} is still {handle.state}",
            )
        if not handle.completed:
            return reference
        vm_name, vm_uuid = self._provisioned_vm(name, operation, handle)
        self._log.bind(machine=name).info(
            "Allocation {execution} of {name} finished as {vm} ({uuid})",
            execution=handle.execution_id, name=name, vm=vm_name, uuid=vm_uuid,
        )
        return store.write(reference.with_vm(vm_name, vm_uuid))

    async def _run_vm_workflow(
        self,
        name: str,
        operation: Operation,
        store: ReferenceStore,
        reference: MachineReference,
        templates: Mapping[str, WorkflowTemplate],
        *,
        wait: bool,
        fail_on_timeout: bool = True,
    ) -> ExecutionHandle:
        handle = await self._client.submit(
            operation, self._vm_parameters(reference), templates=templates
        )
        store.write(
            reference.with_execution(operation, handle.workflow_id, handle.name, handle.execution_id)
        )
        if not wait:
            return handle

        handle = await self._wait(handle)
        if handle.failed:
            raise WorkflowFailedError(
                name, operation,
                f"execution {handle.execution_id} failed"
                + (f": {handle.error}" if handle.error else ""),
                execution_id=handle.execution_id,
            )
        if handle.alive:
            reason = (
                f"execution {handle.execution_id} still {handle.state} "
                f"after {self._config.max_wait:.0f}s"
            )
            if fail_on_timeout:
                raise WorkflowTimeoutError(name, operation, reason, execution_id=handle.execution_id)
            self._log.bind(machine=name).warning("{op} {name}: {reason}", op=operation,
                                                 name=name, reason=reason)
        return handle

    async def start(
        self, spec: MachineSpec, options: Options = None, *, wait: bool = False
    ) -> ExecutionHandle | None:
        """Power the VM on unless it already runs. Returns the submitted execution."""
        name = spec.name
        with self._operation(name, Operation.START):
            store, reference, _, templates = self._load(spec, Operation.START, options)
            reference = await self._settle_allocation(name, Operation.START, store, reference)
            instance = await self._instance(name, reference, templates)
            if instance is None:
                raise InstanceNotReadyError(name, Operation.START, "no instance found")
            if instance.is_running:
                self._log.bind(machine=name).debug("{name} is already running", name=name)
                return None

            self._log.bind(machine=name).info("Starting {name}", name=name)
            return await self._run_vm_workflow(
                name, Operation.START, store, reference, templates, wait=wait
            )

    async def stop(
        self, spec: MachineSpec, options: Options = None, *, wait: bool = False
    ) -> ExecutionHandle | None:
        """Power the VM off. A missing or powered-off VM is left alone."""
        name = spec.name
        with self._operation(name, Operation.STOP):
            store, reference, _, templates = self._load(spec, Operation.STOP, options)
            reference = await self._settle_allocation(name, Operation.STOP, store, reference)
            instance = await self._instance(name, reference, templates)
            if instance is None or instance.is_stopped:
                self._log.bind(machine=name).debug("{name} has nothing to stop", name=name)
                return None

            self._log.bind(machine=name).info("Stopping {name}", name=name)
            return await self._run_vm_workflow(
                name, Operation.STOP, store, reference, templates, wait=wait
            )

    async def destroy(
        self, spec: MachineSpec, options: Options = None, *, wait: bool = False
    ) -> ExecutionHandle | None:
        """Destroy the VM. The reference keeps its VM identity afterwards."""
        name = spec.name
        with self._operation(name, Operation.DESTROY):
            store, reference, _, templates = self._load(spec, Operation.DESTROY, options)
            reference = await self._settle_allocation(name, Operation.DESTROY, store, reference)
            instance = await self._instance(name, reference, templates)
            if instance is None:
                self._log.bind(machine=name).debug("{name} has no instance to destroy", name=name)
                return None

            self._log.bind(machine=name).info("Destroying {name}", name=name)
            return await self._run_vm_workflow(
                name, Operation.DESTROY, store, reference, templates,
                wait=wait, fail_on_timeout=False,
            )
