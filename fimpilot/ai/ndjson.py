"""Incremental framing for newline-delimited JSON streams."""

from __future__ import annotations

import json
from typing import Any


class NdjsonStreamParser:
    """Splits a byte stream on newlines and decodes each complete line.

    A trailing partial line stays buffered until its newline arrives. Lines
    that do not decode to a JSON object are counted and skipped.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.malformed_lines = 0

    def reset(self) -> None:
        self._buffer.clear()
        self.malformed_lines = 0

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, data: bytes | bytearray) -> list[dict[str, Any]]:
        if data:
            self._buffer.extend(data)

        messages: list[dict[str, Any]] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline]).strip()
            del self._buffer[: newline + 1]
            if not line:
                continue
            try:
                decoded = json.loads(line.decode("utf-8"))
            except Exception:
                self.malformed_lines += 1
                continue
            if isinstance(decoded, dict):
                messages.append(decoded)
            else:
                self.malformed_lines += 1
        return messages
