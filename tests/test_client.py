from __future__ import annotations

import pytest

from tests.conftest import RUNNING, FakeVco, allocated, make_config
from vcodriver.constants import Operation
from vcodriver.core.exceptions import (
    AuthenticationError,
    ConnectionError,
    TemplateNotFoundError,
)
from vcodriver.workflow.client import WorkflowClient, execution_id_from_location
from vcodriver.workflow.types import ExecutionState

pytestmark = [pytest.mark.xdist_group("unit")]

ALLOCATE_ID = "708bf42d-2eb5-4dec-b511-e8295b66245b"


def test_execution_id_from_location():
    loc = "https://vco:8281/vco/api/workflows/wf/executions/ff8080/"
    assert execution_id_from_location(loc) == "ff8080"
    assert execution_id_from_location(loc.rstrip("/")) == "ff8080"


@pytest.mark.asyncio
async def test_submit_returns_pending_handle(vco: FakeVco, vco_url: str):
    client = WorkflowClient(make_config(url=vco_url))

    handle = await client.submit(Operation.ALLOCATE, {"nodename": "web-1", "coreCount": 2, "image": None})

    assert handle.workflow_id == ALLOCATE_ID
    assert handle.execution_id == "exec-1"
    assert handle.name == "allocate_machine"
    assert handle.state is ExecutionState.PENDING
    assert handle.alive

    workflow_id, parameters = vco.submitted[0]
    assert workflow_id == ALLOCATE_ID
    assert parameters == [
        {"name": "nodename", "type": "string", "scope": "local", "value": {"string": {"value": "web-1"}}},
        {"name": "coreCount", "type": "number", "scope": "local", "value": {"number": {"value": 2}}},
    ]


@pytest.mark.asyncio
async def test_each_submit_creates_a_new_execution(vco: FakeVco, vco_url: str):
    client = WorkflowClient(make_config(url=vco_url))

    first = await client.submit(Operation.START, {"vmName": "n1"})
    second = await client.submit(Operation.START, {"vmName": "n1"})

    assert first.execution_id != second.execution_id
    assert len(vco.submitted) == 2


@pytest.mark.asyncio
async def test_query_decodes_state_and_outputs(vco: FakeVco, vco_url: str):
    vco.script(ALLOCATE_ID, RUNNING, allocated(["u1"], ["n1"]))
    client = WorkflowClient(make_config(url=vco_url))
    handle = await client.submit(Operation.ALLOCATE, {"nodename": "web-1"})

    running = await client.query(handle.workflow_id, handle.execution_id)
    done = await client.query(handle.workflow_id, handle.execution_id)

    assert running.state is ExecutionState.RUNNING
    assert done.state is ExecutionState.COMPLETED
    assert not done.alive
    assert done.output("provisionedVmUuids") == ["u1"]
    assert done.output("provisionedVmNames") == ["n1"]


@pytest.mark.asyncio
async def test_unregistered_tag(vco: FakeVco, vco_url: str):
    client = WorkflowClient(make_config(url=vco_url, workflows={}))

    with pytest.raises(TemplateNotFoundError):
        await client.submit(Operation.ALLOCATE, {})
    assert vco.submitted == []


@pytest.mark.asyncio
async def test_workflow_missing_on_server(vco: FakeVco, vco_url: str):
    vco.known_workflows = set()
    client = WorkflowClient(make_config(url=vco_url))

    with pytest.raises(TemplateNotFoundError):
        await client.submit(Operation.ALLOCATE, {})


@pytest.mark.asyncio
async def test_bad_credentials(vco_url: str):
    client = WorkflowClient(make_config(url=vco_url, password="wrong"))

    with pytest.raises(AuthenticationError):
        await client.submit(Operation.ALLOCATE, {})


@pytest.mark.asyncio
async def test_password_from_environment(vco: FakeVco, vco_url: str, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("VCO_PASSWORD", "secret")
    client = WorkflowClient(make_config(url=vco_url, password=None))

    handle = await client.submit(Operation.ALLOCATE, {})

    assert handle.execution_id == "exec-1"


@pytest.mark.asyncio
async def test_unreachable_server():
    client = WorkflowClient(make_config(url="http://127.0.0.1:1/", request_timeout=2))

    with pytest.raises(ConnectionError):
        await client.submit(Operation.ALLOCATE, {})


@pytest.mark.asyncio
async def test_query_retries_transient_errors(vco: FakeVco, vco_url: str):
    client = WorkflowClient(make_config(url=vco_url))
    handle = await client.submit(Operation.STOP, {})
    vco.fail_next_queries = [503]

    result = await client.query(handle.workflow_id, handle.execution_id)

    assert result.state is ExecutionState.COMPLETED


@pytest.mark.asyncio
async def test_query_gives_up_after_repeated_server_errors(vco: FakeVco, vco_url: str):
    client = WorkflowClient(make_config(url=vco_url))
    handle = await client.submit(Operation.STOP, {})
    vco.fail_next_queries = [503, 503, 503]

    with pytest.raises(ConnectionError):
        await client.query(handle.workflow_id, handle.execution_id)


@pytest.mark.asyncio
async def test_rejected_submission_creates_no_execution(vco: FakeVco, vco_url: str):
    vco.password = "rotated"
    client = WorkflowClient(make_config(url=vco_url))

    with pytest.raises(AuthenticationError):
        await client.submit(Operation.ALLOCATE, {})
    assert vco.submitted == []
