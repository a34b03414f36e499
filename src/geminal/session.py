import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Iterator, Sequence
from contextlib import aclosing
from enum import Enum

from geminal.config import ClientConfig
from geminal.errors import (
    ConfigurationError,
    ExchangeCancelledError,
    GeminalError,
    MalformedUnitError,
    ServiceStreamError,
    SessionBusyError,
    UnexpectedError,
)
from geminal.events import (
    ExchangeCompleteEvent,
    ExchangeFailedEvent,
    FragmentEvent,
    MalformedUnitEvent,
    StreamEvent,
)
from geminal.instrumentation import exchange_span, record_error, record_response
from geminal.message import Turn, TurnRole
from geminal.streaming import StreamDecoder, StreamMessage, TextDelta
from geminal.transport import HttpTransport, Transport

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = (
    "API key not configured. Please update config.json with your Gemini API key."
)
CANCELLED_MESSAGE = "Request cancelled"


class ExchangeState(Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"
    FAILED = "failed"


class FailurePolicy(Enum):
    """What happens to the user turn of a failed exchange.

    ``KEEP_USER_TURN`` leaves it in the transcript, so it is resent as
    context on the next request. ``ROLLBACK`` removes it, restoring the
    transcript to what it was before the failed ``submit``.
    """

    KEEP_USER_TURN = "keep_user_turn"
    ROLLBACK = "rollback"


class ChatSession:
    """Owns one conversation transcript and runs one exchange at a time.

    Each exchange appends the user turn immediately, streams the reply
    through a fresh :class:`~geminal.streaming.StreamDecoder`, and
    appends the assistant turn only once the stream completes with
    non-empty text.

    ``submit()`` drives ``stream()`` and dispatches to callbacks.
    ``stream()`` is the event-based entry point: zero or more
    :class:`FragmentEvent` / :class:`MalformedUnitEvent`, then exactly
    one :class:`ExchangeCompleteEvent` or :class:`ExchangeFailedEvent`.

    Args:
        config: Model, credential and generation parameters.
        transport: Byte-stream transport, an :class:`HttpTransport`
            over ``config`` by default.
        failure_policy: Whether a failed exchange keeps its user turn.
        session_id: Identifier used in logs and traces.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        *,
        failure_policy: FailurePolicy = FailurePolicy.KEEP_USER_TURN,
        session_id: str | None = None,
    ):
        self.config = config
        self.transport = transport or HttpTransport(config)
        self.failure_policy = failure_policy
        self.session_id = session_id or str(uuid.uuid4())
        self.state = ExchangeState.IDLE
        self._transcript: list[Turn] = []

    @property
    def busy(self) -> bool:
        return self.state is ExchangeState.AWAITING_RESPONSE

    def history(self) -> tuple[Turn, ...]:
        """The transcript, oldest first. Turns are immutable."""
        return tuple(self._transcript)

    def reset(self) -> None:
        """Clear the whole transcript."""
        if self.busy:
            raise SessionBusyError("Cannot reset while an exchange is in progress")
        self._transcript.clear()
        self.state = ExchangeState.IDLE
        logger.info(f"Session {self.session_id} reset")

    def switch_model(self, model: str) -> None:
        """Target a different model. Context does not carry across models."""
        self.reset()
        self.config = self.config.model_copy(update={"model": model})
        logger.info(f"Session {self.session_id} switched to model {model}")

    def build_request(self, turns: Sequence[Turn]) -> dict:
        body: dict = {"contents": [t.to_content() for t in turns]}
        if self.config.system_instruction:
            body["systemInstruction"] = {
                "parts": [{"text": self.config.system_instruction}],
            }
        body["generationConfig"] = self.config.generation.to_request()
        return body

    async def submit(
        self,
        user_text: str,
        on_fragment: Callable[[str], None],
        on_complete: Callable[[str], None],
        on_error: Callable[[str], None],
        on_warning: Callable[[str], None] | None = None,
    ) -> None:
        """Run one exchange, reporting progress through callbacks.

        ``on_fragment`` is called for each piece of text in order, then
        exactly one of ``on_complete`` or ``on_error``. ``on_warning``
        receives a note for every malformed unit that was skipped.
        """
        try:
            async with aclosing(self.stream(user_text)) as events:
                async for event in events:
                    if isinstance(event, FragmentEvent):
                        on_fragment(event.text)
                    elif isinstance(event, MalformedUnitEvent):
                        if on_warning is not None:
                            on_warning(f"Skipped malformed unit: {event.reason}")
                    elif isinstance(event, ExchangeCompleteEvent):
                        on_complete(event.text)
                    elif isinstance(event, ExchangeFailedEvent):
                        on_error(event.message)
        except asyncio.CancelledError:
            on_error(CANCELLED_MESSAGE)
            raise

    async def stream(self, user_text: str) -> AsyncIterator[StreamEvent]:
        """Run one exchange, yielding events as the reply arrives."""
        if self.busy:
            raise SessionBusyError("An exchange is already in progress")

        if not self.config.is_configured:
            logger.warning("Refusing to submit: API key not configured")
            self.state = ExchangeState.FAILED
            yield ExchangeFailedEvent(
                message=NOT_CONFIGURED_MESSAGE, kind=ConfigurationError.code,
            )
            return

        self.state = ExchangeState.AWAITING_RESPONSE
        user_turn = Turn(role=TurnRole.USER, text=user_text)
        self._transcript.append(user_turn)
        body = self.build_request(self._transcript)
        logger.info(
            f"Session {self.session_id}: submitting turn "
            f"{len(self._transcript)} to {self.config.model}"
        )

        terminal: StreamEvent | None = None
        try:
            async with aclosing(self._exchange(body)) as events:
                async for event in events:
                    if isinstance(event, (ExchangeCompleteEvent, ExchangeFailedEvent)):
                        terminal = event
                        continue
                    yield event
        except (asyncio.CancelledError, GeneratorExit):
            # Cancelled, or the caller stopped iterating.
            self._settle(user_turn, ExchangeFailedEvent(
                message=CANCELLED_MESSAGE, kind=ExchangeCancelledError.code,
            ))
            raise
        except BaseException as e:
            self._settle(user_turn, ExchangeFailedEvent(
                message=str(e), kind=UnexpectedError.code,
            ))
            raise

        if terminal is None:
            terminal = ExchangeFailedEvent(
                message="Stream ended without an outcome",
                kind=GeminalError.code,
            )
        self._settle(user_turn, terminal)
        yield terminal

    # ------------------------------------------------------------------
    # Exchange internals
    # ------------------------------------------------------------------

    async def _exchange(self, body: dict) -> AsyncIterator[StreamEvent]:
        model = self.config.model
        decoder = StreamDecoder()
        fragment_count = 0

        async with exchange_span(model, self.session_id) as span:
            try:
                async with aclosing(self.transport.open_stream(model, body)) as chunks:
                    async for chunk in chunks:
                        seen = len(decoder.malformed_units)
                        messages = decoder.feed(chunk)
                        skipped = decoder.malformed_units[seen:]
                        for event in _in_arrival_order(messages, skipped):
                            if isinstance(event, FragmentEvent):
                                fragment_count += 1
                            yield event
                        if decoder.done:
                            break
                result = decoder.finish()
                if not result.ok:
                    raise ServiceStreamError(result.error)
            except GeminalError as e:
                failure = e
            except Exception as e:
                logger.exception(f"Unexpected error during exchange: {e!r}")
                failure = UnexpectedError(
                    f"Unexpected error: {str(e) or type(e).__name__}",
                    error_type=type(e).__name__,
                )
                failure.__cause__ = e
            else:
                failure = None

            if failure is not None:
                logger.warning(f"Exchange failed [{failure.code}]: {failure.message}")
                record_error(span, failure)
                yield ExchangeFailedEvent(message=failure.message, kind=failure.code)
                return

            record_response(span, result.text, fragment_count)
            yield ExchangeCompleteEvent(text=result.text)

    def _settle(self, user_turn: Turn, terminal: StreamEvent) -> None:
        if isinstance(terminal, ExchangeCompleteEvent):
            if terminal.text:
                self._transcript.append(
                    Turn(role=TurnRole.ASSISTANT, text=terminal.text)
                )
            else:
                logger.info("Empty response; no assistant turn recorded")
            self.state = ExchangeState.COMPLETED
            return

        if (
            self.failure_policy is FailurePolicy.ROLLBACK
            and self._transcript
            and self._transcript[-1] is user_turn
        ):
            self._transcript.pop()
        self.state = ExchangeState.FAILED


def _in_arrival_order(
    messages: list[StreamMessage],
    skipped: list[MalformedUnitError],
) -> Iterator[StreamEvent]:
    """Interleave fragments and skipped-unit warnings as they appeared on the wire."""
    pending = list(skipped)
    for index in range(len(messages) + 1):
        while pending and pending[0].position <= index:
            unit = pending.pop(0)
            yield MalformedUnitEvent(raw=unit.raw, reason=unit.reason)
        if index < len(messages) and isinstance(messages[index], TextDelta):
            for fragment in messages[index].fragments:
                yield FragmentEvent(text=fragment)
