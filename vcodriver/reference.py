"""Machine reference: the persisted record that lets the driver resume.

The host framework owns persistence. The driver only reads and writes a
flat, string-keyed mapping through ``ReferenceStore`` and re-reads what
was written before acting on it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from vcodriver.core.exceptions import ReferenceConsistencyError


@dataclass(frozen=True, slots=True)
class MachineReference:
    """Identity of a machine's remote state.

    ``vm_name`` and ``vm_uuid`` are set together once allocation completes
    and are never cleared. ``workflow_id``/``execution_id`` track the most
    recent submitted operation, named by ``operation``.
    """

    driver_url: str | None = None
    driver_version: str | None = None
    vco_url: str | None = None
    operation: str | None = None
    workflow_name: str | None = None
    workflow_id: str | None = None
    execution_id: str | None = None
    vm_name: str | None = None
    vm_uuid: str | None = None
    allocated_at: str | None = None
    is_windows: bool = False
    ssh_username: str | None = None
    sudo: bool = False
    ssh_gateway: str | None = None
    cpu: int | None = None
    ram: int | None = None
    image: str | None = None

    @classmethod
    def from_mapping(
        cls,
        raw: Mapping[str, Any] | None,
        *,
        machine: str = "",
        operation: str = "load reference",
    ) -> MachineReference:
        """Load from a persisted mapping. Missing keys are fine; unknown keys are ignored."""
        if not raw:
            return cls()
        names = {f.name for f in fields(cls)}
        ref = cls(**{k: v for k, v in raw.items() if k in names and v is not None})
        ref.check(machine, operation)
        return ref

    def to_mapping(self) -> dict[str, Any]:
        return {
            k: v for k, v in asdict(self).items()
            if v is not None and not (isinstance(v, bool) and not v)
        }

    def check(self, machine: str = "", operation: str = "load reference") -> None:
        """Raise ReferenceConsistencyError on half-written identity pairs."""
        if bool(self.vm_name) != bool(self.vm_uuid):
            raise ReferenceConsistencyError(
                machine, operation,
                f"vm_name={self.vm_name!r} and vm_uuid={self.vm_uuid!r} must be set together",
            )
        if bool(self.workflow_id) != bool(self.execution_id):
            raise ReferenceConsistencyError(
                machine, operation,
                f"workflow_id={self.workflow_id!r} and "
                f"execution_id={self.execution_id!r} must be set together",
            )

    @property
    def is_empty(self) -> bool:
        return self == MachineReference()

    @property
    def provisioned(self) -> bool:
        return bool(self.vm_uuid)

    @property
    def has_execution(self) -> bool:
        return bool(self.execution_id)

    def with_execution(self, operation: str, workflow_id: str, workflow_name: str,
                       execution_id: str) -> MachineReference:
        return replace(
            self,
            operation=operation,
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            execution_id=execution_id,
        )

    def with_vm(self, vm_name: str, vm_uuid: str) -> MachineReference:
        return replace(self, vm_name=vm_name, vm_uuid=vm_uuid)


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


# =============================================================================
# Machine specs
# =============================================================================


@runtime_checkable
class MachineSpec(Protocol):
    """What the host framework hands the driver for each machine."""

    name: str
    reference: dict[str, Any] | None


@dataclass
class InMemoryMachineSpec:
    name: str
    reference: dict[str, Any] | None = None


@dataclass
class JsonMachineSpec:
    """Machine spec persisted as a JSON document on disk.

    Example:
        spec = JsonMachineSpec.load(Path("machines/web-1.json"))
        await driver.allocate(spec, options)
    """

    name: str
    path: Path
    reference: dict[str, Any] | None = field(default=None)

    @classmethod
    def load(cls, path: Path, name: str | None = None) -> JsonMachineSpec:
        if not path.is_file():
            return cls(name=name or path.stem, path=path)
        data = json.loads(path.read_text())
        return cls(name=data.get("name", name or path.stem), path=path,
                   reference=data.get("reference"))

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps({"name": self.name, "reference": self.reference}, indent=2))
        tmp.replace(self.path)


class ReferenceStore:
    """Read/write access to a spec's reference on behalf of one operation.

    Consistency errors raised by ``read`` name that operation.
    """

    def __init__(self, spec: MachineSpec, *, operation: str = "load reference") -> None:
        self._spec = spec
        self._operation = operation

    @property
    def machine(self) -> str:
        return self._spec.name

    def read(self) -> MachineReference:
        return MachineReference.from_mapping(
            self._spec.reference, machine=self._spec.name, operation=self._operation
        )

    def write(self, reference: MachineReference) -> MachineReference:
        self._spec.reference = reference.to_mapping()
        save = getattr(self._spec, "save", None)
        if callable(save):
            save()
        return self.read()
