"""Full lifecycle against the in-process vCO REST server."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import DRIVER_URL, RUNNING, FakeVco, allocated, info_outputs, make_config
from vcodriver.constants import DEFAULT_WORKFLOWS, Operation
from vcodriver.core.exceptions import AuthenticationError
from vcodriver.driver import Driver
from vcodriver.machine import Convergence, SshTransport
from vcodriver.reference import JsonMachineSpec

pytestmark = [pytest.mark.xdist_group("integration")]


def workflow_id(operation: Operation) -> str:
    return DEFAULT_WORKFLOWS[operation]["id"]


@pytest.mark.asyncio
async def test_allocate_ready_stop_destroy(vco: FakeVco, vco_url: str, tmp_path: Path):
    vco.script(workflow_id(Operation.ALLOCATE), RUNNING, allocated(["4207a1"], ["web-1-vm"]))
    vco.script(workflow_id(Operation.GET_INFO), ("completed", info_outputs()))
    driver = Driver(DRIVER_URL, make_config(url=vco_url, wait_interval=0.01))
    path = tmp_path / "web-1.json"

    await driver.allocate(JsonMachineSpec.load(path), {"cpu": 2, "ram": 2048, "image": "centos7"})
    spec = JsonMachineSpec.load(path)
    assert spec.reference is not None
    assert spec.reference["execution_id"] == "exec-1"

    machine = await driver.ready(spec)
    assert machine.transport == SshTransport(host="10.0.0.5")
    assert machine.convergence is Convergence.INSTALL_SH

    stopped = await driver.stop(JsonMachineSpec.load(path), wait=True)
    assert stopped is not None and stopped.completed

    destroyed = await driver.destroy(JsonMachineSpec.load(path), wait=True)
    assert destroyed is not None and destroyed.completed

    final = JsonMachineSpec.load(path).reference
    assert final is not None
    assert final["vm_uuid"] == "4207a1"
    assert final["operation"] == Operation.DESTROY

    submitted = [wid for wid, _ in vco.submitted]
    assert submitted.count(workflow_id(Operation.ALLOCATE)) == 1
    assert submitted.count(workflow_id(Operation.STOP)) == 1
    assert submitted.count(workflow_id(Operation.DESTROY)) == 1

    allocate_params = {p["name"]: p for p in vco.submitted[0][1]}
    assert allocate_params["coreCount"]["value"] == {"number": {"value": 2}}
    assert allocate_params["tenant"]["value"] == {"string": {"value": "atom-active"}}
    assert "reservationPolicy" not in allocate_params


@pytest.mark.asyncio
async def test_bad_credentials_are_tagged_with_machine(vco_url: str, tmp_path: Path):
    driver = Driver(DRIVER_URL, make_config(url=vco_url, password="wrong"))

    with pytest.raises(AuthenticationError) as exc_info:
        await driver.allocate(JsonMachineSpec.load(tmp_path / "web-1.json"))

    assert any("web-1" in note for note in exc_info.value.__notes__)
    assert not (tmp_path / "web-1.json").exists()
