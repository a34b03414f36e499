"""Error taxonomy for a chat exchange.

Every error carries a machine-readable ``code`` and a human-readable
``message``. The session turns any of these into a single terminal
failure for the current exchange; none of them is fatal to the process.
"""


class GeminalError(Exception):
    """Base class for all geminal errors.

    Args:
        code: Machine-readable error code, e.g. ``"NETWORK_ERROR"``.
        message: Human-readable message, suitable for showing the user.
        **extra: Additional context (status, model, url, ...).
    """

    code = "ERROR"

    def __init__(self, message: str, code: str | None = None, **extra):
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra
        super().__init__(message)


class ConfigurationError(GeminalError):
    """Credential or endpoint missing. Raised before any network call."""

    code = "NOT_CONFIGURED"


class TransportError(GeminalError):
    """Connection failed, dropped, or returned a non-success status."""

    code = "NETWORK_ERROR"


class RateLimitError(TransportError):
    """The service answered 429."""

    code = "RATE_LIMIT"


class ExchangeCancelledError(TransportError):
    """The exchange was aborted before reaching a terminal outcome."""

    code = "CANCELLED"


class ServiceStreamError(GeminalError):
    """A well-formed error unit arrived mid-stream."""

    code = "SERVICE_ERROR"


class MalformedUnitError(GeminalError):
    """A structural unit could not be parsed. Recovered locally."""

    code = "MALFORMED_UNIT"

    def __init__(self, message: str, raw: str, reason: str = "", position: int = 0, **extra):
        super().__init__(message, raw=raw, **extra)
        self.raw = raw
        self.reason = reason
        # Index among the messages returned by the same feed() call.
        self.position = position


class SessionBusyError(GeminalError):
    """A second exchange was submitted while one is outstanding."""

    code = "SESSION_BUSY"


class DecoderClosedError(GeminalError):
    """A decoder was used after reaching its terminal outcome."""

    code = "DECODER_CLOSED"


class UnexpectedError(GeminalError):
    """Any other failure while an exchange was in flight."""

    code = "UNEXPECTED_ERROR"
