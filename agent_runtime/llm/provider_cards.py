# agent_runtime/llm/provider_cards.py
# SPDX-License-Identifier: Apache-2.0
"""
Built-in provider cards.

A provider card is the static catalog entry a UI or router shows before any
live model listing happens: the provider identity, a default set of chat
models and the model used for connectivity checks.
"""

from __future__ import annotations

from agent_runtime.llm.cloudflare_adapter import PROVIDER_ID
from agent_runtime.llm.llm_base import ChatModelCard, ModelProviderCard

# ref https://developers.cloudflare.com/workers-ai/models/#text-generation
CLOUDFLARE_PROVIDER_CARD = ModelProviderCard(
    id=PROVIDER_ID,
    name="Cloudflare Workers AI",
    chat_models=(
        ChatModelCard(
            id="@hf/meta-llama/meta-llama-3-8b-instruct",
            display_name="meta-llama-3-8b-instruct",
            description=(
                "Generation over generation, Meta Llama 3 demonstrates state-of-the-art "
                "performance on a wide range of industry benchmarks and offers new "
                "capabilities, including improved reasoning."
            ),
            enabled=True,
            function_call=False,
        ),
    ),
    check_model="@hf/meta-llama/meta-llama-3-8b-instruct",
    show_model_fetcher=True,
)

__all__ = ["CLOUDFLARE_PROVIDER_CARD"]
