"""SSE (Server-Sent Events) framing utilities."""

import codecs
import json
from typing import Any, Optional

DONE_FRAME = b"data: [DONE]\n\n"


def encode_sse_data(payload: Any) -> bytes:
    """Encode one ``data: <json>`` frame."""
    json_str = json.dumps(payload, ensure_ascii=False)
    return f"data: {json_str}\n\n".encode("utf-8")


def extract_sse_data(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line.

    The payload is whitespace-stripped, so ``data:{...}`` and ``data: {...}``
    are equivalent.
    """
    if not line.startswith("data:"):
        return None
    return line[5:].strip()


class SSELineDecoder:
    """Reassemble text lines from arbitrarily split byte chunks.

    Network reads do not respect line (or even UTF-8 character) boundaries;
    ``feed`` returns only complete lines and keeps the remainder buffered.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        text = self._pending + self._decoder.decode(chunk)
        lines = text.split("\n")
        self._pending = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not text:
            return []
        return [text.rstrip("\r")]
