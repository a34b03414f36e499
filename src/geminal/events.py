"""Events emitted while a chat exchange is in flight."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class StreamEvent:
    """Base for all exchange events."""


@dataclass
class FragmentEvent(StreamEvent):
    """A piece of assistant text, in arrival order."""

    text: str = ""


@dataclass
class MalformedUnitEvent(StreamEvent):
    """A unit on the wire failed to parse and was skipped.

    Non-fatal: the exchange carries on after this event.
    """

    raw: str = ""
    reason: str = ""


@dataclass
class ExchangeCompleteEvent(StreamEvent):
    """Terminal event for a successful exchange."""

    text: str = ""


@dataclass
class ExchangeFailedEvent(StreamEvent):
    """Terminal event for a failed exchange.

    ``kind`` is the error code of the underlying failure, e.g.
    ``"NETWORK_ERROR"``, ``"SERVICE_ERROR"`` or ``"CANCELLED"``.
    """

    message: str = ""
    kind: str = ""
