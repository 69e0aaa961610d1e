# SPDX-License-Identifier: Apache-2.0
"""
Agent Runtime provider adapter tests.

Covers the Cloudflare Workers AI adapter: connection resolution, endpoint
desensitization, model normalization, stream transcoding, chat error
classification and the wire handler.
"""
