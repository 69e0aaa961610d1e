# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the provider adapter tests.

No test in this suite touches the network: every adapter is built on an
`httpx.AsyncClient` backed by `httpx.MockTransport`.
"""

from __future__ import annotations

import pytest

from agent_runtime.llm.cloudflare_adapter import ENV_API_KEY, ENV_BASE_URL_OR_ACCOUNT_ID
from tests.fakes import ACCOUNT_ID, RecordingMetrics


@pytest.fixture(autouse=True)
def _isolate_cloudflare_env(monkeypatch):
    """Keep developer credentials in the environment out of the tests."""
    monkeypatch.delenv(ENV_BASE_URL_OR_ACCOUNT_ID, raising=False)
    monkeypatch.delenv(ENV_API_KEY, raising=False)


@pytest.fixture
def account_id() -> str:
    return ACCOUNT_ID


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()
