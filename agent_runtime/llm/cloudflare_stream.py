# agent_runtime/llm/cloudflare_stream.py
# SPDX-License-Identifier: Apache-2.0
"""
Cloudflare Workers AI stream transcoding.

Workers AI streams server-sent events of the form

    data: {"response": "Hel", ...}\\n\\n
    data: {"response": "lo", ...}\\n\\n
    data: [DONE]\\n\\n

but network chunks do not respect event boundaries: a single event may be
split across chunks (even inside the "\\n\\n" delimiter) and one chunk may
carry several events. `CloudflareStreamTransformer` reassembles complete
events and re-emits each as the canonical two-line frame

    event: text\\n
    data: "<json-encoded response>"\\n\\n

The vendor's [DONE] sentinel is never echoed; it ends the stream.

One transformer instance belongs to exactly one stream. It holds at most one
partial event between chunks.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, List, Optional, Union

logger = logging.getLogger(__name__)

EVENT_DELIMITER = "\n\n"
DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

TEXT_EVENT_LINE = "event: text\n"


class StreamTranscodingError(ValueError):
    """A complete upstream event was neither the sentinel nor a JSON object."""


def is_done_sentinel(event: str) -> bool:
    """True when `event` carries the terminal sentinel, in any letter case."""
    return DONE_SENTINEL.lower() in event.strip().lower()


def event_to_frames(event: str) -> List[str]:
    """
    Convert one complete upstream event into canonical frame lines.

    Raises:
        json.JSONDecodeError: the event body is not JSON.
        StreamTranscodingError: the event body is JSON but not an object.
    """
    body = event.strip()
    if not body:
        return []
    if body.startswith(DATA_PREFIX):
        body = body[len(DATA_PREFIX):]

    data: Any = json.loads(body)
    if not isinstance(data, dict):
        raise StreamTranscodingError(
            f"expected a JSON object event, got {type(data).__name__}"
        )
    if "response" not in data:
        # Metadata-only events (usage and the like) carry no text.
        return []
    return [TEXT_EVENT_LINE, f"data: {json.dumps(data['response'])}\n\n"]


class CloudflareStreamTransformer:
    """
    Incremental parser for one Workers AI response body.

    Call `transform()` once per network chunk, in arrival order. Once the
    sentinel has been seen `done` is True and further chunks are ignored.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self.done = False

    @property
    def pending(self) -> str:
        """The buffered partial event, if any."""
        return self._pending

    def transform(self, chunk: Union[bytes, str]) -> List[str]:
        """Consume one chunk and return the frames it completes."""
        if self.done:
            return []

        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if self._pending:
            text = self._pending + text
            self._pending = ""

        *complete, tail = text.split(EVENT_DELIMITER)

        frames: List[str] = []
        for event in complete:
            if is_done_sentinel(event):
                self.done = True
                return frames
            frames.extend(event_to_frames(event))

        if tail:
            self._pending = tail
        return frames


async def transcode_cloudflare_stream(
    chunks: AsyncIterable[bytes],
    transformer: Optional[CloudflareStreamTransformer] = None,
) -> AsyncIterator[str]:
    """
    Pipe an upstream byte stream through a transformer.

    Stops pulling from `chunks` as soon as the sentinel is seen. A trailing
    fragment without its delimiter is dropped at end of input.
    """
    transformer = transformer or CloudflareStreamTransformer()
    async for chunk in chunks:
        for frame in transformer.transform(chunk):
            yield frame
        if transformer.done:
            return

    if transformer.pending.strip():
        logger.debug(
            "discarding %d trailing characters without an event delimiter",
            len(transformer.pending),
        )


__all__ = [
    "EVENT_DELIMITER",
    "DONE_SENTINEL",
    "StreamTranscodingError",
    "CloudflareStreamTransformer",
    "event_to_frames",
    "is_done_sentinel",
    "transcode_cloudflare_stream",
]
