# agent_runtime/llm/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Provider Protocol V1 - Public API

This module provides the public interface for the provider protocol and the
Cloudflare Workers AI adapter. All public types and handlers are re-exported
here for clean imports.
"""

from agent_runtime.llm.llm_base import (
    # Protocol version
    LLM_PROTOCOL_VERSION,

    # Error types
    LLMAdapterError,
    BadRequest,
    NotSupported,
    ProviderError,
    InvalidCredentials,
    RegionRestricted,
    ProviderBusinessError,

    # Context, options and metrics
    OperationContext,
    ChatOptions,
    MetricsSink,
    NoopMetrics,

    # Result models
    ChatModelCard,
    ModelProviderCard,
    LLMCapabilities,
    StreamingResponse,

    # Protocol interface
    ProviderProtocolV1,
    BaseProviderAdapter,

    # Wire handler
    WireProviderHandler,
)
from agent_runtime.llm.cloudflare_adapter import (
    CloudflareAdapter,
    CloudflareConnection,
    desensitize_cloudflare_url,
    normalize_model,
)
from agent_runtime.llm.cloudflare_stream import (
    CloudflareStreamTransformer,
    transcode_cloudflare_stream,
)
from agent_runtime.llm.desensitize import desensitize_url
from agent_runtime.llm.provider_cards import CLOUDFLARE_PROVIDER_CARD

__all__ = [
    # Protocol version
    "LLM_PROTOCOL_VERSION",

    # Error types
    "LLMAdapterError",
    "BadRequest",
    "NotSupported",
    "ProviderError",
    "InvalidCredentials",
    "RegionRestricted",
    "ProviderBusinessError",

    # Context, options and metrics
    "OperationContext",
    "ChatOptions",
    "MetricsSink",
    "NoopMetrics",

    # Result models
    "ChatModelCard",
    "ModelProviderCard",
    "LLMCapabilities",
    "StreamingResponse",

    # Protocol interface
    "ProviderProtocolV1",
    "BaseProviderAdapter",

    # Wire handler
    "WireProviderHandler",

    # Cloudflare Workers AI
    "CloudflareAdapter",
    "CloudflareConnection",
    "CloudflareStreamTransformer",
    "transcode_cloudflare_stream",
    "desensitize_cloudflare_url",
    "desensitize_url",
    "normalize_model",
    "CLOUDFLARE_PROVIDER_CARD",
]

__version__ = LLM_PROTOCOL_VERSION
