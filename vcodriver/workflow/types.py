"""Workflow execution types and the vCO parameter codec.

vCO represents every parameter as ``{"name", "type", "value"}`` where
``value`` is a single-key object naming the type, e.g.
``{"string": {"value": "web-1"}}`` or
``{"array": {"elements": [{"string": {"value": "u1"}}]}}``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

type ParameterValue = str | int | float | bool | list[Any] | dict[str, Any] | None


class ExecutionState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_vco(cls, raw: str | None) -> ExecutionState:
        """Map a vCO execution state onto the driver's five states."""
        match (raw or "").lower():
            case "running":
                return cls.RUNNING
            case "waiting" | "waiting-signal" | "suspended" | "scheduled":
                return cls.PENDING
            case "completed":
                return cls.COMPLETED
            case "failed" | "canceled" | "cancelled":
                return cls.FAILED
            case _:
                return cls.UNKNOWN


@dataclass(frozen=True, slots=True)
class ExecutionHandle:
    """Snapshot of one workflow execution as last seen by the driver."""

    workflow_id: str
    execution_id: str
    name: str
    state: ExecutionState
    output_parameters: Mapping[str, ParameterValue] = field(
        default_factory=lambda: MappingProxyType({})
    )
    error: str | None = None

    @property
    def alive(self) -> bool:
        return self.state in (ExecutionState.PENDING, ExecutionState.RUNNING)

    @property
    def failed(self) -> bool:
        return self.state is ExecutionState.FAILED

    @property
    def completed(self) -> bool:
        return self.state is ExecutionState.COMPLETED

    def output(self, key: str, default: ParameterValue = None) -> ParameterValue:
        return self.output_parameters.get(key, default)


# =============================================================================
# Codec
# =============================================================================


def _scalar_type(value: Any) -> str:
    match value:
        case bool():
            return "boolean"
        case int() | float():
            return "number"
        case _:
            return "string"


def _encode_value(value: Any) -> dict[str, Any]:
    match value:
        case bool():
            return {"boolean": {"value": value}}
        case int() | float():
            return {"number": {"value": value}}
        case Sequence() if not isinstance(value, str):
            return {"array": {"elements": [_encode_value(v) for v in value]}}
        case _:
            return {"string": {"value": str(value)}}


def encode_parameter(name: str, value: Any) -> dict[str, Any]:
    if isinstance(value, Sequence) and not isinstance(value, str):
        inner = _scalar_type(value[0]) if value else "string"
        vco_type = f"Array/{inner}"
    else:
        vco_type = _scalar_type(value)
    return {"name": name, "type": vco_type, "scope": "local", "value": _encode_value(value)}


def encode_parameters(parameters: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Encode a key/value mapping as a vCO parameter list, dropping None values."""
    return [encode_parameter(k, v) for k, v in parameters.items() if v is not None]


def decode_value(raw: Mapping[str, Any] | None) -> ParameterValue:
    if not raw:
        return None
    kind, body = next(iter(raw.items()))
    match kind:
        case "array":
            return [decode_value(e) for e in (body or {}).get("elements", [])]
        case "properties":
            return {
                p["key"]: decode_value(p.get("value"))
                for p in (body or {}).get("property", [])
            }
        case "sdk-object":
            return dict(body or {})
        case _:
            return (body or {}).get("value")


def decode_parameters(raw: Sequence[Mapping[str, Any]] | None) -> dict[str, ParameterValue]:
    """Decode a vCO parameter list into a plain key/value dict."""
    return {p["name"]: decode_value(p.get("value")) for p in raw or ()}
