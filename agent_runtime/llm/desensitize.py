# agent_runtime/llm/desensitize.py
# SPDX-License-Identifier: Apache-2.0
"""
Generic URL desensitization for error payloads and logs.

Custom or self-hosted endpoints may embed internal hostnames. Before such a
URL is attached to an error, every host label except the top-level domain is
reduced to its first and last two characters, and a non-default port is
masked entirely:

    https://my-gateway.internal.example.com:8443/v1?x=1
        → https://my****ay.in****al.ex****le.com:****/v1?x=1

Labels of four characters or fewer carry too little to keep and become
"****". Path and query are left untouched; provider-specific secrets in the
path (account identifiers, for instance) are the caller's responsibility.
"""

from __future__ import annotations

import httpx

MASK = "****"


def _mask_label(label: str) -> str:
    if len(label) <= 4:
        return MASK
    return f"{label[:2]}{MASK}{label[-2:]}"


def desensitize_host(hostname: str) -> str:
    """Mask every label of `hostname` except the last one."""
    if not hostname:
        return hostname
    labels = hostname.split(".")
    if len(labels) == 1:
        return _mask_label(labels[0])
    return ".".join([_mask_label(label) for label in labels[:-1]] + [labels[-1]])


def desensitize_url(url: str) -> str:
    """
    Return `url` with host and port masked.

    Default ports are dropped. Input that cannot be parsed as an absolute
    URL is returned unchanged.
    """
    try:
        parts = httpx.URL(url)
    except Exception:  # noqa: BLE001
        return url
    if not parts.scheme or not parts.host:
        return url

    origin = f"{parts.scheme}://{desensitize_host(parts.host)}"
    if parts.port is not None:
        origin += f":{MASK}"
    # raw_path carries the query and keeps the original percent-encoding.
    return f"{origin}{parts.raw_path.decode('ascii')}"


__all__ = ["desensitize_url", "desensitize_host"]
