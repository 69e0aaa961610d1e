# agent_runtime/llm/llm_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Agent Runtime — Provider Protocol V1 (public contract + instrumented base)

Purpose
-------
A stable, vendor-neutral surface for chat-completion providers, with:

- Structured, normalized error taxonomy (SIEM-safe, machine-actionable)
- One canonical server-sent-event stream regardless of vendor format
- Normalized model cards for catalog listing
- Metrics hooks with hashed tenant identifiers
- Canonical JSON wire envelopes via WireProviderHandler (transport-agnostic)

Design Philosophy
-----------------
- Minimal core surface:
    * capabilities()
    * chat()
    * models()
    * health()
- Async-first: all operations are non-blocking and awaitable.
- Provider-neutral: vendor adapters map into this contract and own the
  transcoding of their own streaming formats.
- Errors carry a desensitized endpoint, never a raw URL.

Deliberate Non-Goals
--------------------
- No retries, hedging, routing, or fallback.
- No rate limiting or response caching.
- No cross-request coordination; every call is one request/response cycle.

Those behaviors live in your router / control-plane layers.

Canonical Stream Format
-----------------------
Every streaming chat result yields text frames of exactly two lines:

    event: text
    data: "<json-escaped text>"

followed by a blank line. The stream ends silently (no trailing sentinel).

Wire Contract (Canonical Interface)
-----------------------------------
    Request:
        {
            "op": "llm.<operation>",
            "ctx": {"request_id": "...", "tenant": "...", "attrs": {...}},
            "args": { ... }
        }

    Unary Success:
        {"ok": true, "code": "OK", "ms": <float>, "result": { ... }}

    Unary Error:
        {
            "ok": false,
            "code": "<UPPER_SNAKE_CASE>",
            "error": "<ErrorClassName>",
            "message": "<human readable>",
            "details": { ... } | null,
            "ms": <float>
        }

    Streaming (llm.chat):
        Zero or more {"ok": true, "code": "OK", "ms": <float>, "chunk": "<frame>"}
        envelopes, or a single error envelope that terminates the stream.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, asdict, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

LOG = logging.getLogger(__name__)

LLM_PROTOCOL_VERSION = "1.0.0"

# =============================================================================
# Normalized Errors
# =============================================================================

class LLMAdapterError(Exception):
    """
    Base exception for all provider adapter errors.

    Attributes:
        message:
            Human-readable description (safe for logs and clients).
        code:
            Upper-snake-case machine code; when omitted, wire layer derives from class.
        details:
            Additional JSON-safe context (never include secrets/PII).
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.details:
            base += f" details={self.details}"
        return base


class BadRequest(LLMAdapterError):
    """
    Client error: malformed payload or invalid options.

    Examples:
        - Payload without a model
        - Tools that are not {function: ...} mappings
    """
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "BAD_REQUEST")
        super().__init__(message, **kwargs)


class NotSupported(LLMAdapterError):
    """Unsupported operation or parameter."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "NOT_SUPPORTED")
        super().__init__(message, **kwargs)


class ProviderError(LLMAdapterError):
    """
    Error surfaced by a provider call.

    Attributes:
        endpoint:
            Desensitized endpoint of the provider (account identifiers and
            custom hosts already masked).
        cause:
            The original exception or upstream response.
        kind:
            Taxonomy name: "InvalidCredentials", "RegionRestricted" or
            "ProviderBusinessError".
        provider:
            Identity of the adapter that raised the error.
    """

    kind = "ProviderBusinessError"

    def __init__(
        self,
        message: str = "",
        *,
        endpoint: Optional[str] = None,
        provider: Optional[str] = None,
        cause: Any = None,
        **kwargs: Any,
    ):
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("kind", self.kind)
        if endpoint is not None:
            details.setdefault("endpoint", endpoint)
        if provider is not None:
            details.setdefault("provider", provider)
        super().__init__(message or self.kind, details=details, **kwargs)
        self.endpoint = endpoint
        self.provider = provider
        self.cause = cause


class InvalidCredentials(ProviderError):
    """Upstream rejected the API key (HTTP 401)."""

    kind = "InvalidCredentials"

    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "INVALID_PROVIDER_API_KEY")
        super().__init__(message, **kwargs)


class RegionRestricted(ProviderError):
    """Upstream refused the request, usually for the caller's location (HTTP 403)."""

    kind = "RegionRestricted"

    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "LOCATION_NOT_SUPPORTED")
        super().__init__(message, **kwargs)


class ProviderBusinessError(ProviderError):
    """
    Any other provider failure: client-side request errors, unclassified
    HTTP statuses, network failures and stream transcoding failures.
    """

    kind = "ProviderBusinessError"

    def __init__(self, message: str = "", **kwargs: Any):
        kwargs.setdefault("code", "PROVIDER_BIZ_ERROR")
        super().__init__(message, **kwargs)


# =============================================================================
# Operation Context (tracing, multi-tenant isolation)
# =============================================================================

@dataclass(frozen=True)
class OperationContext:
    """
    Context for provider operations.

    Attributes:
        request_id:
            Correlation ID for tracing across systems.
        traceparent:
            W3C traceparent header for distributed tracing.
        tenant:
            Tenant/project identifier; never logged directly (only hashed).
        attrs:
            Additional JSON-serializable attributes for routing/middleware.
    """
    request_id: Optional[str] = None
    traceparent: Optional[str] = None
    tenant: Optional[str] = None
    attrs: Mapping[str, Any] = None

    def __post_init__(self) -> None:
        if self.attrs is None:
            object.__setattr__(self, "attrs", {})


@dataclass(frozen=True)
class ChatOptions:
    """
    Per-call options for chat().

    Attributes:
        headers:
            Extra HTTP headers; they win over adapter defaults on conflict.
        ctx:
            Optional OperationContext used for metrics.
    """
    headers: Mapping[str, str] = None
    ctx: Optional[OperationContext] = None

    def __post_init__(self) -> None:
        if self.headers is None:
            object.__setattr__(self, "headers", {})


# =============================================================================
# Metrics Interface (SIEM-safe, low-cardinality)
# =============================================================================

class MetricsSink(Protocol):
    """
    Metrics collection protocol.

    Implementations MUST:
        - Avoid PII.
        - Avoid high-cardinality labels.
        - Hash tenant identifiers when needed.
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


# =============================================================================
# Result Models
# =============================================================================

@dataclass
class ChatModelCard:
    """
    Normalized model metadata.

    Attributes:
        id:
            Provider model identifier (e.g. "@cf/meta/llama-3-8b-instruct").
        display_name:
            Human-facing name.
        description:
            Free-form vendor description, when known.
        enabled:
            Whether the model should be offered by default.
        function_call:
            Whether the model supports tool/function calling.
        tokens:
            Max total tokens; None means the limit is unknown (0 is a real value).
    """
    id: str
    display_name: str
    description: Optional[str] = None
    enabled: bool = True
    function_call: bool = False
    tokens: Optional[int] = None


@dataclass(frozen=True)
class ModelProviderCard:
    """Static description of a provider and its built-in models."""
    id: str
    name: str
    chat_models: Tuple[ChatModelCard, ...] = ()
    check_model: Optional[str] = None
    show_model_fetcher: bool = False


@dataclass(frozen=True)
class LLMCapabilities:
    """
    Describes the capabilities of a provider adapter.

    Used by routers/control-plane for model selection and feature routing.
    """
    server: str
    version: str
    model_family: str
    supports_streaming: bool = True
    supports_tools: bool = False
    supports_model_listing: bool = False
    supported_models: Tuple[str, ...] = ()  # empty ⇒ open/adapter-defined set


SSE_HEADERS: Mapping[str, str] = {
    "Cache-Control": "no-cache",
    "Content-Type": "text/event-stream",
}


class StreamingResponse:
    """
    Streaming chat result.

    Iterating yields canonical SSE frame strings. A response that is not
    drained must be closed, either with `aclose()` or by using it as an
    async context manager; closing stops upstream reads and releases the
    upstream connection even if iteration never started.
    """

    def __init__(
        self,
        body: AsyncIterator[str],
        *,
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._body = body
        self._on_close = on_close
        self.status = status
        self.headers: Dict[str, str] = dict(SSE_HEADERS)
        if headers:
            self.headers.update(headers)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._body

    async def __aenter__(self) -> "StreamingResponse":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def read_text(self) -> str:
        """Drain the stream and return the concatenated frames."""
        parts: List[str] = []
        async for frame in self._body:
            parts.append(frame)
        return "".join(parts)

    async def aclose(self) -> None:
        try:
            aclose = getattr(self._body, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()


# =============================================================================
# Stable Protocol Interface
# =============================================================================

@runtime_checkable
class ProviderProtocolV1(Protocol):
    """
    Language-level contract for chat providers.

    Implementations MUST:
        - Be async-only.
        - Raise LLMAdapterError subclasses from chat().
        - Never raise from models(); degrade to an empty list instead.
    """

    async def capabilities(self) -> LLMCapabilities: ...

    async def chat(
        self,
        payload: Mapping[str, Any],
        options: Optional[ChatOptions] = None,
    ) -> StreamingResponse: ...

    async def models(self, *, ctx: Optional[OperationContext] = None) -> List[ChatModelCard]: ...

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Mapping[str, Any]: ...


# =============================================================================
# Base Instrumented Adapter
# =============================================================================

class BaseProviderAdapter(ProviderProtocolV1):
    """
    Base implementation of ProviderProtocolV1.

    This class:
        - Emits SIEM-safe metrics (hashed tenant IDs) for every operation.
        - Meters streaming results over their whole lifetime.
        - Provides async context management for client cleanup.

    Backend implementers override only the `_do_*` hooks.
    """

    _component = "llm"

    def __init__(
        self,
        *,
        metrics: Optional[MetricsSink] = None,
        tag_model_in_metrics: bool = True,
    ) -> None:
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._tag_model_in_metrics: bool = bool(tag_model_in_metrics)

    # --- async context management (resource cleanup hint) --------------------

    async def __aenter__(self) -> "BaseProviderAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """
        Clean up resources (e.g., HTTP clients).

        Override in concrete adapters as needed. Default is a no-op.
        """
        return None

    # --- internal helpers (metrics) ------------------------------------------

    @staticmethod
    def _tenant_hash(t: Optional[str]) -> Optional[str]:
        """
        Hash tenant for metrics/logging.

        Raw tenant identifiers MUST NEVER be emitted.
        """
        if not t:
            return None
        return hashlib.sha256(t.encode()).hexdigest()[:12]

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
        **extra: Any,
    ) -> None:
        """
        Emit a timing metric for an operation.

        Any failures in metrics emission are swallowed.
        """
        try:
            ms = (time.monotonic() - t0) * 1000.0
            x = dict(extra or {})
            if ctx:
                x["tenant"] = self._tenant_hash(ctx.tenant)
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=x or None,
            )
        except Exception:
            pass

    def _counter(self, name: str, value: int = 1) -> None:
        try:
            self._metrics.counter(component=self._component, name=name, value=value)
        except Exception:
            pass

    async def _metered_stream(
        self,
        body: AsyncIterator[str],
        *,
        t0: float,
        ctx: Optional[OperationContext],
        metric_extra: Mapping[str, Any],
    ) -> AsyncIterator[str]:
        """Record overall stream duration and outcome around a frame iterator."""
        frames = 0
        try:
            async for frame in body:
                frames += 1
                yield frame
            self._record("chat", t0, True, ctx=ctx, frames=frames, **metric_extra)
            self._counter("stream_requests_total")
        except LLMAdapterError as e:
            code = e.code or type(e).__name__
            self._record("chat", t0, False, code=code, ctx=ctx, **metric_extra)
            raise
        except Exception:
            self._record("chat", t0, False, code="UnhandledException", ctx=ctx, **metric_extra)
            raise
        finally:
            aclose = getattr(body, "aclose", None)
            if aclose is not None:
                await aclose()

    # --- Public API: capabilities / chat / models / health -------------------

    async def capabilities(self) -> LLMCapabilities:
        """Return adapter capabilities. SHOULD be fast and side-effect free."""
        t0 = time.monotonic()
        caps = await self._do_capabilities()
        self._record("capabilities", t0, True)
        return caps

    async def chat(
        self,
        payload: Mapping[str, Any],
        options: Optional[ChatOptions] = None,
    ) -> StreamingResponse:
        """
        Start a streaming chat completion.

        Errors raised before the stream starts propagate from this call;
        errors raised while streaming propagate from iteration.
        """
        options = options or ChatOptions()
        ctx = options.ctx

        metric_extra: Dict[str, Any] = {}
        model = payload.get("model") if isinstance(payload, Mapping) else None
        if self._tag_model_in_metrics and isinstance(model, str) and model:
            metric_extra["model"] = model

        t0 = time.monotonic()
        try:
            response = await self._do_chat(payload, options)
        except LLMAdapterError as e:
            code = e.code or type(e).__name__
            self._record("chat", t0, False, code=code, ctx=ctx, **metric_extra)
            raise
        except Exception:
            self._record("chat", t0, False, code="UnhandledException", ctx=ctx, **metric_extra)
            raise

        body = self._metered_stream(
            response.__aiter__(),
            t0=t0,
            ctx=ctx,
            metric_extra=metric_extra,
        )
        return StreamingResponse(
            body,
            status=response.status,
            headers=response.headers,
            on_close=response.aclose,
        )

    async def models(self, *, ctx: Optional[OperationContext] = None) -> List[ChatModelCard]:
        """
        List available chat models.

        Best-effort: backend failures degrade to an empty list.
        """
        t0 = time.monotonic()
        try:
            cards = list(await self._do_models(ctx=ctx))
        except Exception as e:
            LOG.warning("model listing failed in %s: %s", type(self).__name__, type(e).__name__)
            self._record("models", t0, False, code="UnhandledException", ctx=ctx)
            return []
        self._record("models", t0, True, ctx=ctx, count=len(cards))
        return cards

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Mapping[str, Any]:
        """
        Health check endpoint with normalized response shape.

        Returns:
            {"ok": bool, "status": str, "server": str, "version": str}

        `status` is forwarded from the backend, defaulting to "healthy" or
        "error" according to `ok`.
        """
        t0 = time.monotonic()
        try:
            h = await self._do_health(ctx=ctx)
        except Exception as e:
            self._record("health", t0, False, code="UnhandledException", ctx=ctx)
            LOG.warning("health check failed in %s: %s", type(self).__name__, type(e).__name__)
            return {"ok": False, "status": "error", "server": "", "version": ""}
        self._record("health", t0, True, ctx=ctx)
        ok = bool(h.get("ok", True))
        return {
            "ok": ok,
            "status": str(h.get("status") or ("healthy" if ok else "error")),
            "server": str(h.get("server", "")),
            "version": str(h.get("version", "")),
        }

    # --- backend hooks -------------------------------------------------------

    async def _do_capabilities(self) -> LLMCapabilities:
        raise NotImplementedError

    async def _do_chat(
        self,
        payload: Mapping[str, Any],
        options: ChatOptions,
    ) -> StreamingResponse:
        """
        Backend implementation of chat().

        Must return a StreamingResponse yielding canonical SSE frames.
        """
        raise NotImplementedError

    async def _do_models(self, *, ctx: Optional[OperationContext] = None) -> List[ChatModelCard]:
        raise NotImplementedError

    async def _do_health(self, *, ctx: Optional[OperationContext] = None) -> Mapping[str, Any]:
        """
        Backend implementation of health().

        Should be lightweight and resilient; callers rely on this for readiness.
        """
        raise NotImplementedError


# =============================================================================
# Wire-Level Helpers (canonical envelopes)
# =============================================================================

def _ctx_from_wire(ctx_dict: Mapping[str, Any]) -> OperationContext:
    """
    Convert wire-level ctx mapping into OperationContext.

    Unknown keys are ignored for forward compatibility.
    """
    if ctx_dict is None:
        return OperationContext()
    return OperationContext(
        request_id=ctx_dict.get("request_id"),
        traceparent=ctx_dict.get("traceparent"),
        tenant=ctx_dict.get("tenant"),
        attrs=ctx_dict.get("attrs") or {},
    )


def _error_to_wire(e: Exception, ms: float) -> Dict[str, Any]:
    """
    Normalize exceptions into canonical error envelopes.

    LLMAdapterError subclasses preserve their codes, messages and details;
    all other exceptions are treated as UNAVAILABLE/internal for callers.
    """
    if isinstance(e, LLMAdapterError):
        return {
            "ok": False,
            "code": (e.code or type(e).__name__.upper()),
            "error": type(e).__name__,
            "message": e.message,
            "details": e.details or None,
            "ms": ms,
        }
    return {
        "ok": False,
        "code": "UNAVAILABLE",
        "error": type(e).__name__,
        "message": "internal error",
        "details": None,
        "ms": ms,
    }


def _success_to_wire(result: Any, ms: float) -> Dict[str, Any]:
    """Wrap successful results into canonical success envelope."""
    if hasattr(result, "__dataclass_fields__"):
        payload = asdict(result)
    elif isinstance(result, list):
        payload = [asdict(r) if hasattr(r, "__dataclass_fields__") else r for r in result]
    else:
        payload = result
    return {
        "ok": True,
        "code": "OK",
        "ms": ms,
        "result": payload,
    }


def _chunk_to_wire(frame: str, ms: float) -> Dict[str, Any]:
    """Wrap one SSE frame into the canonical streaming envelope shape."""
    return {
        "ok": True,
        "code": "OK",
        "ms": ms,
        "chunk": frame,
    }


class WireProviderHandler:
    """
    Reference wire adapter for ProviderProtocolV1.

    Transport-agnostic: plug into HTTP, gRPC, WebSocket, etc.

    Supported unary ops:
        - llm.capabilities
        - llm.models
        - llm.health

    Streaming:
        - llm.chat (via handle_stream)
    """

    def __init__(self, adapter: ProviderProtocolV1):
        self._adapter = adapter

    async def handle(self, envelope: Mapping[str, Any]) -> Dict[str, Any]:
        """Handle unary operations via JSON envelope."""
        t0 = time.monotonic()
        try:
            op = envelope.get("op")
            if not isinstance(op, str):
                raise BadRequest("missing or invalid 'op'")

            ctx = _ctx_from_wire(envelope.get("ctx") or {})

            if op == "llm.capabilities":
                res = await self._adapter.capabilities()
                return _success_to_wire(res, (time.monotonic() - t0) * 1000.0)

            if op == "llm.models":
                res = await self._adapter.models(ctx=ctx)
                return _success_to_wire(res, (time.monotonic() - t0) * 1000.0)

            if op == "llm.health":
                res = await self._adapter.health(ctx=ctx)
                return _success_to_wire(res, (time.monotonic() - t0) * 1000.0)

            # llm.chat is handled exclusively via handle_stream.
            raise NotSupported(f"unknown or non-unary operation '{op}'")

        except Exception as e:
            ms = (time.monotonic() - t0) * 1000.0
            return _error_to_wire(e, ms)

    async def handle_stream(self, envelope: Mapping[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """
        Handle streaming llm.chat requests.

        Expects:
            op: "llm.chat"
            ctx: { ... }
            args: {"payload": {...chat request...}, "headers": {...}}
        """
        t0 = time.monotonic()
        op = envelope.get("op")
        if op != "llm.chat":
            yield _error_to_wire(BadRequest("op must be 'llm.chat' for streaming"), 0.0)
            return

        ctx = _ctx_from_wire(envelope.get("ctx") or {})
        args = envelope.get("args") or {}
        options = ChatOptions(headers=args.get("headers") or {}, ctx=ctx)

        try:
            response = await self._adapter.chat(args.get("payload") or {}, options)
            async for frame in response:
                ms = (time.monotonic() - t0) * 1000.0
                yield _chunk_to_wire(frame, ms)
        except Exception as e:
            ms = (time.monotonic() - t0) * 1000.0
            yield _error_to_wire(e, ms)


__all__ = [
    "LLM_PROTOCOL_VERSION",
    "LLMAdapterError",
    "BadRequest",
    "NotSupported",
    "ProviderError",
    "InvalidCredentials",
    "RegionRestricted",
    "ProviderBusinessError",
    "OperationContext",
    "ChatOptions",
    "MetricsSink",
    "NoopMetrics",
    "ChatModelCard",
    "ModelProviderCard",
    "LLMCapabilities",
    "SSE_HEADERS",
    "StreamingResponse",
    "ProviderProtocolV1",
    "BaseProviderAdapter",
    "WireProviderHandler",
    "_ctx_from_wire",
    "_error_to_wire",
    "_success_to_wire",
    "_chunk_to_wire",
]
