"""Incremental decoding of ``streamGenerateContent`` responses.

The service streams a JSON array of response objects, but the transport
hands us raw bytes with no framing: a chunk may end inside a multi-byte
character, between an object's braces, or inside a string literal.
:class:`StreamDecoder` reassembles complete top-level objects and turns
each one into a :class:`StreamMessage` as soon as its closing brace
arrives.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from geminal.errors import DecoderClosedError, MalformedUnitError

logger = logging.getLogger(__name__)

GENERIC_STREAM_ERROR = "API error in stream"


@dataclass
class TextDelta:
    """Text fragments contributed by one complete unit, in payload order."""

    fragments: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.fragments)


@dataclass
class ErrorNotice:
    """An error payload reported by the service mid-stream."""

    message: str = GENERIC_STREAM_ERROR


StreamMessage = Union[TextDelta, ErrorNotice]


@dataclass
class DecodeResult:
    """Terminal outcome of one decoded response stream."""

    text: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _ScanState(Enum):
    SCANNING = "scanning"
    IN_UNIT = "in_unit"


class StreamDecoder:
    """Reassembles JSON-object units from arbitrarily split byte chunks.

    A decoder handles exactly one response stream. Call :meth:`feed`
    for every chunk in arrival order, then :meth:`finish` once the
    transport reports end-of-stream. An :class:`ErrorNotice` makes the
    decoder terminal immediately.

    The buffer only ever holds the unresolved tail of the input. Scan
    position, brace depth and string-literal state survive between
    ``feed`` calls, so a long unit arriving in many small chunks is
    scanned once.

    Args:
        on_malformed: Optional hook called with ``(raw_unit, reason)``
            whenever a unit fails to parse and is skipped.
    """

    def __init__(
        self,
        on_malformed: Callable[[str, str], None] | None = None,
    ) -> None:
        self.on_malformed = on_malformed
        self.malformed_units: list[MalformedUnitError] = []
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pos = 0
        self._state = _ScanState.SCANNING
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._fragments: list[str] = []
        self._result: DecodeResult | None = None

    @property
    def text(self) -> str:
        """Text accumulated from every fragment seen so far."""
        return "".join(self._fragments)

    @property
    def done(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> DecodeResult | None:
        return self._result

    @property
    def buffered(self) -> int:
        """Number of characters held back waiting for more input."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[StreamMessage]:
        """Consume one chunk and return the messages it completed."""
        if self._result is not None:
            raise DecoderClosedError("Decoder already reached its terminal outcome")

        self._buffer += self._utf8.decode(chunk)
        messages: list[StreamMessage] = []
        while (unit := self._next_unit()) is not None:
            message = self._parse(unit, position=len(messages))
            if message is None:
                continue
            messages.append(message)
            if isinstance(message, ErrorNotice):
                self._result = DecodeResult(error=message.message)
                self._buffer = ""
                self._pos = 0
                break
            self._fragments.extend(message.fragments)
        return messages

    def finish(self) -> DecodeResult:
        """Signal end-of-stream and return the terminal outcome.

        A partial unit left in the buffer is discarded; streams routinely
        end with punctuation that never forms a unit.
        """
        if self._result is not None:
            return self._result

        tail = self._buffer + self._utf8.decode(b"", final=True)
        if tail.strip():
            logger.debug(f"Discarding {len(tail)} unresolved characters at end of stream")
        self._buffer = ""
        self._pos = 0
        self._result = DecodeResult(text=self.text)
        return self._result

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _next_unit(self) -> str | None:
        """Excise the next complete unit from the buffer, if there is one."""
        buf = self._buffer
        i = self._pos
        while i < len(buf):
            ch = buf[i]
            if self._state is _ScanState.SCANNING:
                if ch == "{":
                    # Separators, brackets and stray text before a unit are dropped.
                    buf = buf[i:]
                    i = 0
                    self._state = _ScanState.IN_UNIT
                    self._depth = 1
                i += 1
                continue

            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    self._state = _ScanState.SCANNING
                    self._buffer = buf[i + 1:]
                    self._pos = 0
                    return buf[:i + 1]
            i += 1

        if self._state is _ScanState.SCANNING:
            self._buffer = ""
            self._pos = 0
        else:
            self._buffer = buf
            self._pos = i
        return None

    # ------------------------------------------------------------------
    # Unit parsing
    # ------------------------------------------------------------------

    def _parse(self, unit: str, position: int = 0) -> StreamMessage | None:
        try:
            data = json.loads(unit)
        except (ValueError, RecursionError) as e:
            self._skip(unit, str(e), position)
            return None

        if "candidates" in data or "error" not in data:
            return TextDelta(fragments=extract_fragments(data))
        return ErrorNotice(message=extract_error_message(data["error"]))

    def _skip(self, unit: str, reason: str, position: int) -> None:
        logger.warning(f"Skipping malformed stream unit ({len(unit)} chars): {reason}")
        self.malformed_units.append(
            MalformedUnitError(
                f"Malformed stream unit: {reason}",
                raw=unit, reason=reason, position=position,
            )
        )
        if self.on_malformed is not None:
            self.on_malformed(unit, reason)


def extract_fragments(data: dict[str, Any]) -> list[str]:
    """Return the non-empty ``text`` parts of the first candidate."""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [
        part["text"]
        for part in parts
        if isinstance(part, dict)
        and isinstance(part.get("text"), str)
        and part["text"]
    ]


def extract_error_message(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return GENERIC_STREAM_ERROR
