# agent_runtime/llm/cloudflare_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
Cloudflare Workers AI adapter for the Agent Runtime Provider Protocol.

This module implements a provider adapter on top of the
`BaseProviderAdapter` / ProviderProtocolV1 contract, talking to the Workers
AI REST API directly over `httpx`.

Goals
-----
- Map unified chat payloads → `POST {base_url}/{model}`.
- Transcode the Workers AI event stream into canonical text frames.
- Normalize HTTP failures into the provider error taxonomy, with the
  account identifier masked out of every endpoint we report.
- List text-generation models with normalized metadata.

Usage
-----
    from agent_runtime.llm.cloudflare_adapter import CloudflareAdapter

    adapter = CloudflareAdapter(
        base_url_or_account_id="0123456789abcdef0123456789abcdef",
        api_key="...",
    )

    response = await adapter.chat(
        {
            "model": "@cf/meta/llama-3-8b-instruct",
            "messages": [{"role": "user", "content": "Hello!"}],
            "stream": True,
        }
    )
    async for frame in response:
        print(frame, end="")

Configuration
-------------
Keyword arguments win; otherwise `CLOUDFLARE_BASE_URL_OR_ACCOUNT_ID` and
`CLOUDFLARE_API_KEY` are read from the environment.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import httpx

from agent_runtime.llm.cloudflare_stream import transcode_cloudflare_stream
from agent_runtime.llm.desensitize import desensitize_url
from agent_runtime.llm.llm_base import (
    BadRequest,
    BaseProviderAdapter,
    ChatModelCard,
    ChatOptions,
    InvalidCredentials,
    LLMCapabilities,
    OperationContext,
    ProviderBusinessError,
    ProviderError,
    RegionRestricted,
    StreamingResponse,
)

logger = logging.getLogger(__name__)

PROVIDER_ID = "cloudflare"

DEFAULT_BASE_URL_PREFIX = "https://api.cloudflare.com"
TEXT_GENERATION_TASK = "Text Generation"

ENV_BASE_URL_OR_ACCOUNT_ID = "CLOUDFLARE_BASE_URL_OR_ACCOUNT_ID"
ENV_API_KEY = "CLOUDFLARE_API_KEY"

# A 32-hex-digit path segment framed by slashes. The lookahead leaves the
# closing slash unconsumed so adjacent segments both match.
_ACCOUNT_ID_SEGMENT = re.compile(r"/([0-9A-Fa-f]{32})(?=/)")
_ACCOUNT_ID_MASK = "/****"


# ---------------------------------------------------------------------------
# URL / identity resolution
# ---------------------------------------------------------------------------

def fill_url(account_id: str) -> str:
    """Canonical inference root for an account."""
    return f"{DEFAULT_BASE_URL_PREFIX}/client/v4/accounts/{account_id}/ai/run"


def models_search_url(account_id: str) -> str:
    return f"{DEFAULT_BASE_URL_PREFIX}/client/v4/accounts/{account_id}/ai/models/search"


def extract_account_id(url: str) -> Optional[str]:
    """Return the last slash-framed 32-hex segment of `url`, or None."""
    matches = _ACCOUNT_ID_SEGMENT.findall(url)
    return matches[-1] if matches else None


@dataclass(frozen=True)
class CloudflareConnection:
    """
    Immutable connection settings.

    `account_id` is None when it could not be extracted from a custom base
    URL; chat still works against `base_url`, model listing does not.
    """
    base_url: str
    account_id: Optional[str]
    api_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_base_url_or_account_id(
        cls,
        base_url_or_account_id: str,
        api_key: Optional[str] = None,
    ) -> "CloudflareConnection":
        value = base_url_or_account_id or ""
        if value.startswith("http"):
            return cls(base_url=value, account_id=extract_account_id(value), api_key=api_key)
        return cls(base_url=fill_url(value), account_id=value or None, api_key=api_key)


# ---------------------------------------------------------------------------
# Endpoint desensitization
# ---------------------------------------------------------------------------

def desensitize_account_id(path: str) -> str:
    """Mask every slash-framed account identifier in `path`."""
    return _ACCOUNT_ID_SEGMENT.sub(_ACCOUNT_ID_MASK, path)


def desensitize_cloudflare_url(url: str) -> str:
    """
    Redact `url` for inclusion in errors.

    Canonical Cloudflare URLs only lose the account identifier and are
    otherwise kept byte for byte; any other host is additionally run through
    the generic host redaction.
    """
    if url.startswith(DEFAULT_BASE_URL_PREFIX):
        return desensitize_account_id(url)
    return desensitize_account_id(desensitize_url(url))


# ---------------------------------------------------------------------------
# Model metadata normalization
# ---------------------------------------------------------------------------

def get_model_property(model: Mapping[str, Any], key: str) -> Optional[str]:
    """
    Look up one entry of a model's property bag.

    Older catalog records key properties by "name", newer ones by
    "property_id"; either matches. Returns the value as a string, or None
    when the property is missing, ambiguous, or the record is malformed.
    """
    try:
        properties = model.get("properties")
    except AttributeError:
        return None
    if not isinstance(properties, list):
        return None

    matches = [
        p
        for p in properties
        if isinstance(p, Mapping) and (p.get("property_id") == key or p.get("name") == key)
    ]
    if len(matches) != 1:
        return None
    value = matches[0].get("value")
    if value is None:
        return None
    return str(value)


def _is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() == "true"


def get_model_beta(model: Mapping[str, Any]) -> bool:
    return _is_truthy(get_model_property(model, "beta"))


def get_model_function_calling(model: Mapping[str, Any]) -> bool:
    return _is_truthy(get_model_property(model, "function_calling"))


def get_model_tokens(model: Mapping[str, Any]) -> Optional[int]:
    value = get_model_property(model, "max_total_tokens")
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def get_model_display_name(model: Mapping[str, Any]) -> str:
    name = str(model["name"]).split("/")[-1]
    if get_model_beta(model):
        name += " (Beta)"
    return name


def normalize_model(model: Mapping[str, Any]) -> ChatModelCard:
    """
    Map one raw catalog record onto a ChatModelCard.

    The card id is the model name, the identifier chat() puts in the URL;
    the catalog's own record id is not used.
    """
    beta = get_model_beta(model)
    return ChatModelCard(
        id=model["name"],
        display_name=get_model_display_name(model),
        description=model.get("description"),
        enabled=not beta,
        function_call=get_model_function_calling(model),
        tokens=get_model_tokens(model),
    )


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------

def build_request_body(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Drop `model` (it travels in the URL) and flatten `tools` to the list of
    their `function` objects. Everything else passes through unchanged.
    """
    body = {k: v for k, v in payload.items() if k not in ("model", "tools")}
    tools = payload.get("tools")
    if tools is not None:
        try:
            body = {"tools": [tool["function"] for tool in tools], **body}
        except (KeyError, TypeError) as exc:
            raise BadRequest("tools must be a list of {function: ...} mappings") from exc
    return body


class CloudflareAdapter(BaseProviderAdapter):
    """
    Provider adapter backed by the Cloudflare Workers AI REST API.

    Parameters
    ----------
    base_url_or_account_id:
        Either a full inference root URL (custom gateways included) or a
        bare 32-hex account identifier.
    api_key:
        Workers AI API token. Sent as a bearer token when present.
    client:
        Pre-configured `httpx.AsyncClient` (proxies, timeouts, tests). When
        omitted the adapter creates and owns one, with no client-side
        timeout; timeouts belong to whoever owns the transport.
    metrics, tag_model_in_metrics:
        Passed through to `BaseProviderAdapter`.
    """

    provider = PROVIDER_ID

    def __init__(
        self,
        *,
        base_url_or_account_id: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        metrics=None,
        tag_model_in_metrics: bool = True,
    ) -> None:
        super().__init__(metrics=metrics, tag_model_in_metrics=tag_model_in_metrics)

        base_url_or_account_id = base_url_or_account_id or os.getenv(ENV_BASE_URL_OR_ACCOUNT_ID) or ""
        api_key = api_key or os.getenv(ENV_API_KEY) or None

        self.connection = CloudflareConnection.from_base_url_or_account_id(
            base_url_or_account_id,
            api_key=api_key,
        )
        self.desensitized_endpoint = desensitize_cloudflare_url(self.connection.base_url)
        if self.connection.account_id is None:
            logger.warning(
                "no Cloudflare account ID found in %s; model listing is disabled",
                self.desensitized_endpoint,
            )

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self.connection.base_url

    @property
    def account_id(self) -> Optional[str]:
        return self.connection.account_id

    def _chat_url(self, model: str) -> httpx.URL:
        """Resolve `model` as a path relative to the base URL."""
        base = self.connection.base_url
        if not base.endswith("/"):
            base += "/"
        return httpx.URL(base).join(model.lstrip("/"))

    def _auth_headers(self) -> Dict[str, str]:
        if self.connection.api_key:
            return {"Authorization": f"Bearer {self.connection.api_key}"}
        return {}

    def _build_headers(self, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        headers.update(extra or {})
        return headers

    def _error(self, cls, cause: Any, message: str = "", **details: Any) -> ProviderError:
        return cls(
            message,
            endpoint=self.desensitized_endpoint,
            provider=self.provider,
            cause=cause,
            details=details or None,
        )

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Classify non-2xx responses before any stream processing."""
        if response.is_success:
            return
        status = response.status_code
        await response.aread()
        await response.aclose()

        if status == 401:
            raise self._error(InvalidCredentials, response, "Cloudflare rejected the API key", status=status)
        if status == 403:
            raise self._error(RegionRestricted, response, "Cloudflare refused the request", status=status)
        if status == 400:
            raise self._error(ProviderBusinessError, response, "Cloudflare rejected the request payload", status=status)
        raise self._error(ProviderBusinessError, response, f"Cloudflare error (status={status})", status=status)

    async def _transcode(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for frame in transcode_cloudflare_stream(response.aiter_bytes()):
                yield frame
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._error(
                ProviderBusinessError,
                exc,
                "Cloudflare stream could not be transcoded",
                cause_type=type(exc).__name__,
            ) from exc
        finally:
            await response.aclose()

    # ------------------------------------------------------------------
    # BaseProviderAdapter backend hooks
    # ------------------------------------------------------------------

    async def _do_capabilities(self) -> LLMCapabilities:
        return LLMCapabilities(
            server=PROVIDER_ID,
            version=httpx.__version__,
            model_family="workers-ai",
            supports_streaming=True,
            supports_tools=True,
            supports_model_listing=self.connection.account_id is not None,
            supported_models=(),  # open set; the catalog is fetched via models().
        )

    async def _do_chat(self, payload: Mapping[str, Any], options: ChatOptions) -> StreamingResponse:
        try:
            if not isinstance(payload, Mapping):
                raise BadRequest("payload must be a mapping")
            model = payload.get("model")
            if not isinstance(model, str) or not model:
                raise BadRequest("payload.model must be a non-empty string")

            request = self._client.build_request(
                "POST",
                self._chat_url(model),
                json=build_request_body(payload),
                headers=self._build_headers(options.headers),
            )
            response = await self._client.send(request, stream=True)
            await self._raise_for_status(response)
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._error(
                ProviderBusinessError,
                exc,
                "Cloudflare chat request failed",
                cause_type=type(exc).__name__,
            ) from exc

        return StreamingResponse(
            self._transcode(response),
            status=response.status_code,
            on_close=response.aclose,
        )

    async def _do_models(self, *, ctx: Optional[OperationContext] = None) -> List[ChatModelCard]:
        account_id = self.connection.account_id
        if not account_id:
            logger.warning("skipping model listing for %s: no account ID", self.desensitized_endpoint)
            return []

        try:
            response = await self._client.get(
                models_search_url(account_id),
                headers=self._build_headers(None),
            )
            response.raise_for_status()
            records = response.json()["result"]
            return [
                normalize_model(record)
                for record in records
                if record["task"]["name"] == TEXT_GENERATION_TASK
            ]
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Cloudflare model listing failed for %s: %s",
                self.desensitized_endpoint,
                type(exc).__name__,
            )
            return []

    async def _do_health(self, *, ctx: Optional[OperationContext] = None) -> Mapping[str, Any]:
        """
        Lightweight health check against the model catalog.

        Upstream failures are reported in the payload instead of raised.
        """
        account_id = self.connection.account_id
        if not account_id:
            return {"ok": False, "status": "error", "server": PROVIDER_ID, "version": httpx.__version__}
        try:
            response = await self._client.get(
                models_search_url(account_id),
                headers=self._build_headers(None),
            )
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cloudflare health check failed: %s", type(exc).__name__)
            return {"ok": False, "status": "error", "server": PROVIDER_ID, "version": httpx.__version__}
        return {"ok": True, "status": "healthy", "server": PROVIDER_ID, "version": httpx.__version__}

    # ------------------------------------------------------------------
    # Resource cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if not self._owns_client:
            return
        try:
            await self._client.aclose()
        except Exception:  # noqa: BLE001
            logger.debug("CloudflareAdapter close() failed", exc_info=True)


__all__ = [
    "PROVIDER_ID",
    "DEFAULT_BASE_URL_PREFIX",
    "CloudflareConnection",
    "CloudflareAdapter",
    "fill_url",
    "models_search_url",
    "extract_account_id",
    "desensitize_account_id",
    "desensitize_cloudflare_url",
    "get_model_property",
    "get_model_beta",
    "get_model_function_calling",
    "get_model_tokens",
    "get_model_display_name",
    "normalize_model",
    "build_request_body",
]
