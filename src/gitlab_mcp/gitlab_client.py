"""Thin async client for the GitLab REST v4 API.

Each call opens a short-lived ``httpx.AsyncClient`` against the configured
instance, sends exactly one request (no retries, redirects are not followed)
and turns failures into ``SafeError``. Rate limiting (429) is reported to the
caller, not retried.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from .config import LimitsConfig
from .errors import SafeError, gitlab_http_error
from .safety import redact_text

HeadersProvider = Callable[[], Awaitable[dict[str, str]]]


@dataclass(frozen=True, slots=True)
class RequestBudget:
    """Budget for a single tool call."""

    total_timeout_s: float


def encode_path_segment(value: str | int) -> str:
    """URL-encode a value as a single path segment (``group/project`` -> ``group%2Fproject``)."""
    return quote(str(value), safe="")


def render_param(value: bool | int | str) -> str:
    """Render a query parameter value; booleans become ``true``/``false`` as GitLab expects."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class GitLabClient:
    """Minimal GitLab REST (v4) client."""

    def __init__(
        self,
        *,
        headers_provider: HeadersProvider,
        limits: LimitsConfig,
        api_base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a GitLab REST client.

        Args:
            headers_provider: Async callable that returns the auth headers.
            limits: Timeout limits.
            api_base_url: Instance API root, e.g. https://gitlab.com/api/v4.
            transport: Optional httpx transport for tests.
        """
        self._headers_provider = headers_provider
        self._limits = limits
        self._api_base_url = api_base_url.rstrip("/")
        self._transport = transport

        if not self._api_base_url.startswith(("https://", "http://")):
            raise SafeError(code="Config", message="GitLab API URL must be http(s)")

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    def _timeout(self, budget: RequestBudget) -> httpx.Timeout:
        return httpx.Timeout(
            timeout=min(budget.total_timeout_s, self._limits.total_timeout_s),
            connect=self._limits.connect_timeout_s,
            read=self._limits.read_timeout_s,
        )

    @staticmethod
    def _error_hint(resp: httpx.Response) -> str | None:
        """Extract GitLab's error text.

        GitLab answers with ``{"message": "..."}``, ``{"error": "..."}`` or, for
        validation failures, ``{"message": {"name": ["has already been taken"]}}``.
        """
        try:
            payload = resp.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        value = payload.get("message", payload.get("error"))
        if isinstance(value, dict):
            value = "; ".join(
                f"{field} {', '.join(map(str, errs)) if isinstance(errs, list) else errs}"
                for field, errs in value.items()
            )
        if not isinstance(value, str) or not value:
            return None
        return redact_text(value)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        raise gitlab_http_error(resp.status_code, self._error_hint(resp))

    async def _send(
        self,
        *,
        method: str,
        path: str,
        json_body: dict | None,
        form_body: dict[str, str] | None,
        params: dict[str, str] | None,
        budget: RequestBudget,
    ) -> httpx.Response:
        url = f"{self._api_base_url}{path}"
        headers = dict(await self._headers_provider())

        async with httpx.AsyncClient(
            follow_redirects=False,
            timeout=self._timeout(budget),
            transport=self._transport,
        ) as client:
            try:
                resp = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=json_body,
                    data=form_body,
                    params=params,
                )
            except httpx.TimeoutException as exc:
                raise SafeError(code="Network", message="GitLab request timed out") from exc
            except httpx.HTTPError as exc:
                raise SafeError(code="Network", message="Network request failed") from exc

        self._raise_for_status(resp)
        return resp

    async def request_json(
        self,
        *,
        method: str,
        path: str,
        json_body: dict | None = None,
        form_body: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        budget: RequestBudget,
    ) -> object:
        """Make a request and return decoded JSON.

        GitLab APIs may return either an object (dict) or an array (list).
        """
        resp = await self._send(
            method=method,
            path=path,
            json_body=json_body,
            form_body=form_body,
            params=params,
            budget=budget,
        )
        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            raise SafeError(code="GitLab", message="GitLab returned invalid JSON") from exc

    async def request_bytes(
        self,
        *,
        path: str,
        params: dict[str, str] | None = None,
        budget: RequestBudget,
    ) -> tuple[bytes, str | None]:
        """GET a raw endpoint and return ``(content, content_type)``."""
        resp = await self._send(
            method="GET",
            path=path,
            json_body=None,
            form_body=None,
            params=params,
            budget=budget,
        )
        return resp.content, resp.headers.get("content-type")
