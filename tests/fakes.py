# SPDX-License-Identifier: Apache-2.0
"""
Test doubles for the Cloudflare Workers AI adapter.

  • `sse_event` / `DONE_EVENT` build upstream Workers AI events
  • `streaming_response` serves an `UpstreamBody` chunk by chunk
  • `make_adapter` wires a CloudflareAdapter to a recording MockTransport
  • `RecordingMetrics` captures MetricsSink calls
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import httpx

from agent_runtime.llm.cloudflare_adapter import CloudflareAdapter

ACCOUNT_ID = "0123456789abcdef0123456789abcdef"
CANONICAL_BASE_URL = f"https://api.cloudflare.com/client/v4/accounts/{ACCOUNT_ID}/ai/run"

DONE_EVENT = "data: [DONE]\n\n"


def sse_event(data: Any) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


class UpstreamBody(httpx.AsyncByteStream):
    """Response body served chunk by chunk; remembers what was read and closed."""

    def __init__(self, chunks: Iterable[Union[str, bytes]]):
        self._chunks = [c.encode("utf-8") if isinstance(c, str) else c for c in chunks]
        self.pulled: List[bytes] = []
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            self.pulled.append(chunk)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def streaming_response(
    chunks: Union[Iterable[Union[str, bytes]], UpstreamBody],
    *,
    status: int = 200,
) -> httpx.Response:
    """A response whose body arrives exactly as the given network chunks."""
    body = chunks if isinstance(chunks, UpstreamBody) else UpstreamBody(chunks)
    return httpx.Response(
        status,
        stream=body,
        headers={"content-type": "text/event-stream"},
    )


class RecordingHandler:
    """MockTransport handler that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self._handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.last.content)


def make_adapter(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any):
    """Return (adapter, recorder) sharing one mocked transport."""
    recorder = RecordingHandler(handler)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    kwargs.setdefault("base_url_or_account_id", ACCOUNT_ID)
    adapter = CloudflareAdapter(client=client, **kwargs)
    return adapter, recorder


def model_record(
    name: str,
    *,
    task: str = "Text Generation",
    properties: Optional[List[Dict[str, Any]]] = None,
    description: str = "",
) -> Dict[str, Any]:
    """One raw entry of the Workers AI model search result."""
    return {
        "name": name,
        "description": description,
        "task": {"id": f"task-{task}", "name": task},
        "properties": properties or [],
    }


class RecordingMetrics:
    def __init__(self) -> None:
        self.observations: List[Dict[str, Any]] = []
        self.counters: List[Dict[str, Any]] = []

    def observe(self, *, component, op, ms, ok, code="OK", extra=None) -> None:
        self.observations.append(
            {"component": component, "op": op, "ms": ms, "ok": ok, "code": code, "extra": extra or {}}
        )

    def counter(self, *, component, name, value=1, extra=None) -> None:
        self.counters.append({"component": component, "name": name, "value": value})

    def ops(self, op: str) -> List[Dict[str, Any]]:
        return [o for o in self.observations if o["op"] == op]
