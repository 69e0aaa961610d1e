# SPDX-License-Identifier: Apache-2.0
"""
Cloudflare connection resolution.

Covers:
  • A bare account ID expands to the canonical inference root
  • A full URL is used verbatim and the account ID is extracted from it
  • The last of several 32-hex segments wins; none yields no account ID
  • Environment fallback for both settings
  • The API key never appears in reprs
  • The built-in provider card
"""

import httpx
import pytest

from agent_runtime.llm import CLOUDFLARE_PROVIDER_CARD
from agent_runtime.llm.cloudflare_adapter import (
    ENV_API_KEY,
    ENV_BASE_URL_OR_ACCOUNT_ID,
    CloudflareAdapter,
    CloudflareConnection,
    extract_account_id,
    fill_url,
    models_search_url,
)
from tests.fakes import ACCOUNT_ID, CANONICAL_BASE_URL


def test_bare_account_id_expands_to_canonical_url():
    conn = CloudflareConnection.from_base_url_or_account_id(ACCOUNT_ID)
    assert conn.base_url == CANONICAL_BASE_URL
    assert conn.account_id == ACCOUNT_ID


def test_fill_url_and_models_search_url_share_the_account_root():
    assert fill_url(ACCOUNT_ID) == CANONICAL_BASE_URL
    assert models_search_url(ACCOUNT_ID) == (
        f"https://api.cloudflare.com/client/v4/accounts/{ACCOUNT_ID}/ai/models/search"
    )


def test_full_url_is_used_verbatim():
    url = f"https://gateway.ai.cloudflare.com/v1/{ACCOUNT_ID}/my-gateway/workers-ai"
    conn = CloudflareConnection.from_base_url_or_account_id(url)
    assert conn.base_url == url
    assert conn.account_id == ACCOUNT_ID


@pytest.mark.parametrize(
    "account_id",
    [
        "ffffffffffffffffffffffffffffffff",
        "ABCDEF0123456789ABCDEF0123456789",
        "00000000000000000000000000000000",
    ],
)
def test_account_id_is_extracted_from_canonical_urls(account_id):
    conn = CloudflareConnection.from_base_url_or_account_id(fill_url(account_id))
    assert conn.account_id == account_id


def test_last_hex_segment_wins():
    first = "a" * 32
    url = f"https://proxy.example.com/{first}/accounts/{ACCOUNT_ID}/ai/run"
    assert extract_account_id(url) == ACCOUNT_ID


@pytest.mark.parametrize(
    "url",
    [
        "https://proxy.example.com/ai/run",
        # 31 and 33 hex digits are not account IDs
        f"https://proxy.example.com/{'a' * 31}/ai/run",
        f"https://proxy.example.com/{'a' * 33}/ai/run",
        # must be framed by slashes on both sides
        f"https://proxy.example.com/{ACCOUNT_ID}",
    ],
)
def test_url_without_account_id_segment(url):
    conn = CloudflareConnection.from_base_url_or_account_id(url)
    assert conn.base_url == url
    assert conn.account_id is None


def test_empty_input_has_no_account_id():
    conn = CloudflareConnection.from_base_url_or_account_id("")
    assert conn.account_id is None


def test_api_key_is_hidden_from_repr():
    conn = CloudflareConnection.from_base_url_or_account_id(ACCOUNT_ID, api_key="s3cr3t-token")
    assert conn.api_key == "s3cr3t-token"
    assert "s3cr3t-token" not in repr(conn)


def test_adapter_reads_environment_when_arguments_are_omitted(monkeypatch):
    monkeypatch.setenv(ENV_BASE_URL_OR_ACCOUNT_ID, ACCOUNT_ID)
    monkeypatch.setenv(ENV_API_KEY, "env-token")

    adapter = CloudflareAdapter(client=httpx.AsyncClient())

    assert adapter.base_url == CANONICAL_BASE_URL
    assert adapter.account_id == ACCOUNT_ID
    assert adapter.connection.api_key == "env-token"


def test_explicit_arguments_override_environment(monkeypatch):
    monkeypatch.setenv(ENV_BASE_URL_OR_ACCOUNT_ID, "f" * 32)
    monkeypatch.setenv(ENV_API_KEY, "env-token")

    adapter = CloudflareAdapter(
        base_url_or_account_id=ACCOUNT_ID,
        api_key="arg-token",
        client=httpx.AsyncClient(),
    )

    assert adapter.account_id == ACCOUNT_ID
    assert adapter.connection.api_key == "arg-token"


def test_adapter_endpoint_is_desensitized_at_construction():
    adapter = CloudflareAdapter(base_url_or_account_id=ACCOUNT_ID, client=httpx.AsyncClient())
    assert ACCOUNT_ID not in adapter.desensitized_endpoint
    assert adapter.desensitized_endpoint == "https://api.cloudflare.com/client/v4/accounts/****/ai/run"


def test_provider_card():
    card = CLOUDFLARE_PROVIDER_CARD
    assert card.id == "cloudflare"
    assert card.name == "Cloudflare Workers AI"
    assert card.check_model == "@hf/meta-llama/meta-llama-3-8b-instruct"
    assert card.show_model_fetcher is True
    assert [m.id for m in card.chat_models] == [card.check_model]
