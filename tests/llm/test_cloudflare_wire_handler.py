# SPDX-License-Identifier: Apache-2.0
"""
Wire handler over the Cloudflare adapter.

Covers:
  • Unary envelopes for llm.models / llm.capabilities / llm.health
  • Streaming llm.chat yields one chunk envelope per frame
  • Provider errors keep their code and desensitized details on the wire
  • Bad or unknown ops map to BAD_REQUEST / NOT_SUPPORTED
"""

import json

import httpx
import pytest

from agent_runtime.llm import WireProviderHandler
from tests.fakes import ACCOUNT_ID, DONE_EVENT, make_adapter, model_record, sse_event, streaming_response

pytestmark = pytest.mark.asyncio


def _handler(request):
    if request.url.path.endswith("/ai/models/search"):
        return httpx.Response(200, json={"result": [model_record("@cf/meta/llama-3-8b-instruct")]})
    return streaming_response([sse_event({"response": "Hel"}), sse_event({"response": "lo"}), DONE_EVENT])


async def _collect(stream):
    return [env async for env in stream]


async def test_models_envelope():
    adapter, _ = make_adapter(_handler)
    res = await WireProviderHandler(adapter).handle({"op": "llm.models", "ctx": {"tenant": "t1"}})

    assert res["ok"] is True
    assert res["code"] == "OK"
    assert res["result"] == [
        {
            "id": "@cf/meta/llama-3-8b-instruct",
            "display_name": "llama-3-8b-instruct",
            "description": "",
            "enabled": True,
            "function_call": False,
            "tokens": None,
        }
    ]
    json.dumps(res)


async def test_capabilities_and_health_envelopes():
    adapter, _ = make_adapter(_handler)
    handler = WireProviderHandler(adapter)

    caps = await handler.handle({"op": "llm.capabilities"})
    assert caps["ok"] is True
    assert caps["result"]["server"] == "cloudflare"

    health = await handler.handle({"op": "llm.health"})
    assert health["ok"] is True
    assert health["result"]["ok"] is True


async def test_chat_stream_envelopes():
    adapter, recorder = make_adapter(_handler)
    envelopes = await _collect(
        WireProviderHandler(adapter).handle_stream(
            {
                "op": "llm.chat",
                "args": {
                    "payload": {"model": "@cf/meta/llama-3-8b-instruct", "messages": []},
                    "headers": {"X-Trace": "abc"},
                },
            }
        )
    )

    assert [e["chunk"] for e in envelopes] == [
        "event: text\n",
        'data: "Hel"\n\n',
        "event: text\n",
        'data: "lo"\n\n',
    ]
    assert all(e["ok"] is True and e["code"] == "OK" for e in envelopes)
    assert recorder.last.headers["x-trace"] == "abc"


async def test_chat_error_envelope_is_desensitized():
    adapter, _ = make_adapter(lambda request: httpx.Response(403))
    [envelope] = await _collect(
        WireProviderHandler(adapter).handle_stream(
            {"op": "llm.chat", "args": {"payload": {"model": "@cf/x", "messages": []}}}
        )
    )

    assert envelope["ok"] is False
    assert envelope["code"] == "LOCATION_NOT_SUPPORTED"
    assert envelope["error"] == "RegionRestricted"
    assert envelope["details"]["endpoint"] == "https://api.cloudflare.com/client/v4/accounts/****/ai/run"
    assert ACCOUNT_ID not in json.dumps(envelope)


async def test_unknown_and_missing_ops():
    adapter, _ = make_adapter(_handler)
    handler = WireProviderHandler(adapter)

    missing = await handler.handle({})
    assert missing["ok"] is False
    assert missing["code"] == "BAD_REQUEST"

    unknown = await handler.handle({"op": "llm.chat"})
    assert unknown["ok"] is False
    assert unknown["code"] == "NOT_SUPPORTED"

    [wrong] = await _collect(handler.handle_stream({"op": "llm.models"}))
    assert wrong["ok"] is False
    assert wrong["code"] == "BAD_REQUEST"
