from __future__ import annotations

import itertools
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from vcodriver.config import DriverConfig, WorkflowTemplate
from vcodriver.core.exceptions import TemplateNotFoundError
from vcodriver.workflow.types import ExecutionHandle, ExecutionState, encode_parameter

DRIVER_URL = "vco:atom-active:ref2"

type Step = tuple[str, Mapping[str, Any]]

RUNNING: Step = ("running", {})
COMPLETED: Step = ("completed", {})
FAILED: Step = ("failed", {})


def info_outputs(guest_state: str = "running", power_state: str = "poweredOn") -> dict[str, Any]:
    return {
        "hostName": "n1.example.com",
        "ipAddress": "10.0.0.5",
        "vmHost": "esx-01",
        "bootTime": "2026-10-19T10:00:00Z",
        "powerState": power_state,
        "guestState": guest_state,
        "cleanPowerOff": True,
        "onlineStandBy": False,
    }


def allocated(uuids: Sequence[str] = ("u1",), names: Sequence[str] = ("n1",)) -> Step:
    return ("completed", {"provisionedVmUuids": list(uuids), "provisionedVmNames": list(names)})


async def no_sleep(_: float) -> None:
    return None


def make_config(**overrides: Any) -> DriverConfig:
    base: dict[str, Any] = {
        "url": "https://vco.test:8281/",
        "username": "joeuser",
        "password": "secret",
        "max_wait": 5.0,
        "wait_interval": 0.01,
    }
    return DriverConfig(**{**base, **overrides})


# ─── In-memory workflow client ───────────────────────────────────────


@dataclass
class _Execution:
    workflow_id: str
    name: str
    steps: list[Step]


@dataclass
class FakeWorkflowClient:
    """Scripted stand-in for WorkflowClient.

    Each submission of a tag consumes the next queued script for it (or the
    tag's default); each query advances that execution by one step and
    then stays on the last one.
    """

    config: DriverConfig = field(default_factory=make_config)
    submissions: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    queries: list[tuple[str, str]] = field(default_factory=list)
    scripts: dict[str, list[list[Step]]] = field(default_factory=dict)
    defaults: dict[str, list[Step]] = field(default_factory=dict)
    executions: dict[str, _Execution] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def script(self, tag: str, *steps: Step) -> None:
        self.scripts.setdefault(tag, []).append(list(steps))

    def default(self, tag: str, *steps: Step) -> None:
        self.defaults[tag] = list(steps)

    def seed(self, workflow_id: str, execution_id: str, *steps: Step, name: str = "") -> None:
        self.executions[execution_id] = _Execution(workflow_id, name, list(steps))

    def submitted(self, tag: str) -> list[dict[str, Any]]:
        return [params for t, params in self.submissions if t == tag]

    @property
    def remote_calls(self) -> int:
        return len(self.submissions) + len(self.queries)

    async def submit(
        self,
        tag: str,
        parameters: Mapping[str, Any],
        *,
        templates: Mapping[str, WorkflowTemplate] | None = None,
    ) -> ExecutionHandle:
        workflow = (templates or self.config.workflows).get(tag)
        if workflow is None:
            raise TemplateNotFoundError(tag)
        self.submissions.append((tag, dict(parameters)))
        queued = self.scripts.get(tag)
        steps = queued.pop(0) if queued else list(self.defaults.get(tag, [COMPLETED]))
        execution_id = f"E{next(self._ids)}"
        self.executions[execution_id] = _Execution(workflow.id, workflow.name, steps)
        return ExecutionHandle(
            workflow_id=workflow.id,
            execution_id=execution_id,
            name=workflow.name,
            state=ExecutionState.PENDING,
        )

    async def query(self, workflow_id: str, execution_id: str) -> ExecutionHandle:
        self.queries.append((workflow_id, execution_id))
        execution = self.executions[execution_id]
        state, outputs = execution.steps[0]
        if len(execution.steps) > 1:
            execution.steps.pop(0)
        return ExecutionHandle(
            workflow_id=workflow_id,
            execution_id=execution_id,
            name=execution.name,
            state=ExecutionState(state),
            output_parameters=MappingProxyType(dict(outputs)),
        )


@pytest.fixture
def config() -> DriverConfig:
    return make_config()


@pytest.fixture
def client(config: DriverConfig) -> FakeWorkflowClient:
    return FakeWorkflowClient(config=config)


# ─── Fake vCO REST server ────────────────────────────────────────────


@dataclass
class FakeVco:
    """Minimal vCO REST API: submit executions, report scripted states."""

    username: str = "joeuser"
    password: str = "secret"
    known_workflows: set[str] | None = None
    scripts: dict[str, list[Step]] = field(default_factory=dict)
    executions: dict[str, list[Step]] = field(default_factory=dict)
    submitted: list[tuple[str, list[dict[str, Any]]]] = field(default_factory=list)
    fail_next_queries: list[int] = field(default_factory=list)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def script(self, workflow_id: str, *steps: Step) -> None:
        self.scripts[workflow_id] = list(steps)

    def _authorized(self, request: web.Request) -> bool:
        expected = aiohttp.BasicAuth(self.username, self.password).encode()
        return request.headers.get("Authorization") == expected

    async def submit(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.Response(status=401, text="unauthorized")
        workflow_id = request.match_info["workflow_id"]
        if self.known_workflows is not None and workflow_id not in self.known_workflows:
            return web.json_response({"status": 404}, status=404)
        body = await request.json()
        self.submitted.append((workflow_id, body["parameters"]))
        execution_id = f"exec-{next(self._ids)}"
        self.executions[execution_id] = list(self.scripts.get(workflow_id, [COMPLETED]))
        location = f"{request.url.origin()}/vco/api/workflows/{workflow_id}/executions/{execution_id}/"
        return web.Response(status=202, headers={"Location": location})

    async def execution(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return web.Response(status=401, text="unauthorized")
        if self.fail_next_queries:
            return web.Response(status=self.fail_next_queries.pop(0), text="unavailable")
        execution_id = request.match_info["execution_id"]
        steps = self.executions.get(execution_id)
        if steps is None:
            return web.json_response({"status": 404}, status=404)
        state, outputs = steps[0]
        if len(steps) > 1:
            steps.pop(0)
        return web.json_response({
            "id": execution_id,
            "name": request.match_info["workflow_id"],
            "state": state,
            "output-parameters": [encode_parameter(k, v) for k, v in outputs.items()],
        })

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/vco/api/workflows/{workflow_id}/executions", self.submit)
        app.router.add_get(
            "/vco/api/workflows/{workflow_id}/executions/{execution_id}", self.execution
        )
        return app


@pytest.fixture
def vco() -> FakeVco:
    return FakeVco()


@pytest.fixture
async def vco_server(vco: FakeVco):
    srv = TestServer(vco.app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def vco_url(vco_server: TestServer) -> str:
    return f"http://{vco_server.host}:{vco_server.port}/"
