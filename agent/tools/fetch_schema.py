from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)

TOOL_NAME = "fetch-schema"
DEFAULT_TIMEOUT = 15.0


class ToolResult(BaseModel):
    """Uniform outcome of a schema fetch.

    HTTP error responses (including 402 paywalls) are successful fetches with
    ``ok=False`` and a ``status``. Only local failures set ``error``, and those
    never carry a ``status``.
    """

    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    status: Optional[int] = None
    status_text: Optional[str] = Field(default=None, alias="statusText")
    body: Any = None
    error: Optional[str] = None

    def as_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ToolInvocation(BaseModel):
    session_id: str
    url: str
    result: ToolResult


class FetchSchemaInput(BaseModel):
    urlToFetch: str = Field(..., min_length=1, description="url is required")


def _validate_url(raw: str) -> httpx.URL:
    url = httpx.URL(raw.strip())
    if url.scheme not in ("http", "https") or not url.host:
        raise httpx.InvalidURL(f"Invalid URL: {raw}")
    return url


def _parse_body(raw_body: str) -> Any:
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except json.JSONDecodeError:
        return raw_body


async def _fetch_once(client: httpx.AsyncClient, url: httpx.URL) -> ToolResult:
    response = await client.post(
        url,
        json={},
        headers={"Accept": "application/json"},
    )
    raw_body = response.text
    return ToolResult(
        ok=response.is_success,
        status=response.status_code,
        status_text=response.reason_phrase,
        body=_parse_body(raw_body),
    )


async def fetch_schema(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> ToolResult:
    """POST an empty JSON body to ``url`` and report what came back."""
    try:
        target = _validate_url(url)
        if client is not None:
            result = await _fetch_once(client, target)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                result = await _fetch_once(owned, target)
    except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, ValueError) as exc:
        logger.warning("Schema fetch failed: url=%s error=%s", url, exc)
        return ToolResult(ok=False, error=str(exc) or exc.__class__.__name__)

    logger.info("Schema fetch: url=%s status=%s", url, result.status)
    return result


def build_fetch_schema_tool(
    session_id: str,
    invocations: List[ToolInvocation],
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> StructuredTool:
    """Build a ``fetch-schema`` tool bound to one session's turn.

    Results are appended to ``invocations``, which belongs to the caller's
    turn; nothing is cached across turns or sessions.
    """

    async def _fetch_schema_tool(urlToFetch: str) -> Dict[str, Any]:
        result = await fetch_schema(urlToFetch, client=client, timeout=timeout)
        invocations.append(
            ToolInvocation(session_id=session_id, url=urlToFetch, result=result)
        )
        return result.as_payload()

    description = (
        "POST to URLs so you can explain their x402 required schemas. "
        "Input must be a JSON object with the key urlToFetch."
    )
    return StructuredTool.from_function(
        coroutine=_fetch_schema_tool,
        name=TOOL_NAME,
        description=description,
        args_schema=FetchSchemaInput,
    )
