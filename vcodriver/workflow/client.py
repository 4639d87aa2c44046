"""Async client for the vRealize Orchestrator workflow REST API."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import aiohttp
from loguru import logger

from vcodriver.config import DriverConfig, WorkflowTemplate
from vcodriver.constants import API_ROOT
from vcodriver.core.exceptions import (
    AuthenticationError,
    ConnectionError,
    TemplateNotFoundError,
    VcoDriverError,
)
from vcodriver.infra.http import HttpClient, HttpError
from vcodriver.infra.retry import on_status_code, retry

from .types import ExecutionHandle, ExecutionState, decode_parameters, encode_parameters

TRANSIENT_STATUSES = (0, 502, 503, 504)


def execution_id_from_location(location: str) -> str:
    """Extract the execution id from a ``.../executions/<id>/`` Location header."""
    return location.rstrip("/").rsplit("/", 1)[-1]


class WorkflowClient:
    """Submits and queries workflow executions on a vCO server.

    No session is pinned across calls: every submit or query opens its own
    authenticated HTTP session, so long waits survive session expiry.

    Example:
        client = WorkflowClient(config)
        handle = await client.submit("allocate_machine", {"nodename": "web-1"})
        handle = await client.query(handle.workflow_id, handle.execution_id)
    """

    def __init__(self, config: DriverConfig) -> None:
        self._config = config
        self._log = logger.bind(component="workflow-client")

    def _http(self) -> HttpClient:
        username = self._config.username
        password = self._config.password_resolved
        auth = aiohttp.BasicAuth(username, password) if username and password is not None else None
        return HttpClient(
            self._config.url,
            auth,
            timeout=self._config.request_timeout,
            verify_ssl=self._config.verify_ssl,
            default_headers={"Content-Type": "application/json"},
        )

    def template(
        self,
        tag: str,
        templates: Mapping[str, WorkflowTemplate] | None = None,
    ) -> WorkflowTemplate:
        found = (templates or self._config.workflows).get(tag)
        if found is None:
            raise TemplateNotFoundError(tag)
        return found

    def _translate(self, e: HttpError, what: str) -> VcoDriverError:
        match e.status:
            case 401 | 403:
                return AuthenticationError(f"{what}: credentials rejected ({e.status})")
            case 0:
                return ConnectionError(f"{what}: {self._config.url} unreachable ({e.body})")
            case status if status >= 500:
                return ConnectionError(f"{what}: server error {status}")
            case _:
                return VcoDriverError(f"{what}: {e}")

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        tag: str,
        parameters: Mapping[str, Any],
        *,
        templates: Mapping[str, WorkflowTemplate] | None = None,
    ) -> ExecutionHandle:
        """Start one execution of the workflow registered under ``tag``.

        Every call creates a new remote job; nothing is deduplicated here.

        Raises:
            TemplateNotFoundError: ``tag`` is unregistered or the workflow
                does not exist on the server.
            AuthenticationError: Credentials were rejected.
            ConnectionError: The server could not be reached.
        """
        workflow = self.template(tag, templates)
        path = f"{API_ROOT}/workflows/{workflow.id}/executions"
        body = {"parameters": encode_parameters(parameters)}
        self._log.debug(
            "Submitting {name} ({id}) with {keys}",
            name=workflow.name, id=workflow.id, keys=sorted(parameters),
        )

        try:
            async with self._http() as http:
                response = await http.post(path, json=body)
        except HttpError as e:
            if e.status == 404:
                raise TemplateNotFoundError(
                    tag, f"({workflow.name} {workflow.id}) not found on server"
                ) from e
            raise self._translate(e, f"submit {workflow.name}") from e

        location = response.header("Location")
        if not location:
            raise VcoDriverError(f"submit {workflow.name}: response carried no execution location")

        execution_id = execution_id_from_location(location)
        self._log.info(
            "Submitted {name}, execution {execution}", name=workflow.name, execution=execution_id
        )
        return ExecutionHandle(
            workflow_id=workflow.id,
            execution_id=execution_id,
            name=workflow.name,
            state=ExecutionState.PENDING,
        )

    # =========================================================================
    # Status
    # =========================================================================

    @retry(on=on_status_code(*TRANSIENT_STATUSES), attempts=3, base_delay=0.5)
    async def _fetch_execution(self, workflow_id: str, execution_id: str) -> dict[str, Any]:
        async with self._http() as http:
            response = await http.get(
                f"{API_ROOT}/workflows/{workflow_id}/executions/{execution_id}"
            )
        return response.data or {}

    async def query(self, workflow_id: str, execution_id: str) -> ExecutionHandle:
        """Re-attach to an existing execution without creating a new one."""
        try:
            data = await self._fetch_execution(workflow_id, execution_id)
        except HttpError as e:
            raise self._translate(e, f"query execution {execution_id}") from e

        handle = ExecutionHandle(
            workflow_id=workflow_id,
            execution_id=str(data.get("id") or execution_id),
            name=str(data.get("name", "")),
            state=ExecutionState.from_vco(data.get("state")),
            output_parameters=MappingProxyType(decode_parameters(data.get("output-parameters"))),
            error=data.get("content-exception"),
        )
        self._log.debug(
            "Execution {execution} of {workflow} is {state}",
            execution=handle.execution_id, workflow=workflow_id, state=handle.state,
        )
        return handle
