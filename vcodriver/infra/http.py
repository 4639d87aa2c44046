"""Thin aiohttp wrapper used to talk to the vCO REST API.

Every failure surfaces as ``HttpError``: a non-2xx reply keeps its status
and body, and a request that never got a reply uses ``status == 0``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from loguru import logger

type JsonBody = dict[str, Any] | list[Any]


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    status: int
    body: str
    url: str = ""

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.body}"


@dataclass(frozen=True, slots=True)
class Response:
    status: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        return next((v for k, v in self.headers.items() if k.lower() == wanted), None)


class HttpClient:
    """JSON-over-HTTP session bound to one orchestrator endpoint.

    Example:
        auth = aiohttp.BasicAuth("joe", "pw")
        async with HttpClient("https://vco:8281", auth) as http:
            resp = await http.get("/vco/api/workflows")
    """

    def __init__(
        self,
        base_url: str,
        auth: aiohttp.BasicAuth | None = None,
        *,
        timeout: float = 30,
        verify_ssl: bool = True,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._root = base_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._headers = {"Accept": "application/json", **(default_headers or {})}
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    def _open(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                connector=aiohttp.TCPConnector(ssl=self._verify_ssl),
                headers=self._headers,
                auth=self._auth,
            )
        return self._session

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: JsonBody | None = None,
        params: dict[str, Any] | None = None,
    ) -> Response:
        url = f"{self._root}{path}"
        session = self._open()
        try:
            async with session.request(method, url, json=json, params=params) as resp:
                raw = await resp.read()
                text = raw.decode("utf-8", errors="replace")
                self._log.debug(
                    "{method} {path} -> {status}", method=method, path=path, status=resp.status
                )
                if resp.status >= 400:
                    self._log.warning("HTTP {status} from {url}: {body}",
                                      status=resp.status, url=url, body=text[:500])
                    raise HttpError(status=resp.status, body=text, url=url)
                data = await resp.json(content_type=None) if raw else None
                return Response(status=resp.status, data=data, headers=dict(resp.headers))
        except (aiohttp.ClientError, TimeoutError) as e:
            reason = str(e) or f"no reply within {self._timeout:.0f}s"
            raise HttpError(status=0, body=reason, url=url) from e

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Response:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: JsonBody | None = None) -> Response:
        return await self.request("POST", path, json=json)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpClient:
        self._open()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
