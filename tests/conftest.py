import json

import pytest

from geminal.config import ClientConfig
from geminal.errors import TransportError


# ---------------------------------------------------------------------------
# Wire payload helpers
# ---------------------------------------------------------------------------

def text_unit(*texts: str) -> str:
    """One response object carrying ``texts`` as parts of candidate 0."""
    return json.dumps({
        "candidates": [{
            "content": {
                "role": "model",
                "parts": [{"text": t} for t in texts],
            },
        }],
    }, ensure_ascii=False)


def error_unit(message: str | None = None) -> str:
    error = {"code": 429, "status": "RESOURCE_EXHAUSTED"}
    if message is not None:
        error["message"] = message
    return json.dumps({"error": error})


def wire(*units: str) -> bytes:
    """Join units the way the service frames them: a JSON array."""
    return ("[" + ",\r\n".join(units) + "]").encode("utf-8")


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

class FakeTransport:
    """Transport that replays pre-queued chunk lists. No network calls.

    Each entry of ``streams`` is consumed by one exchange: either a list
    of byte chunks, or an exception to raise. An exception placed inside
    a chunk list is raised at that point of the stream.
    """

    def __init__(self, *streams):
        self.streams = list(streams)
        self.call_log: list[dict] = []

    async def open_stream(self, model, body):
        self.call_log.append({"model": model, "body": body})
        stream = self.streams.pop(0)
        if isinstance(stream, BaseException):
            raise stream
        for chunk in stream:
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk


@pytest.fixture
def config():
    return ClientConfig(api_key="test-key-1234567890", model="mock-model")


@pytest.fixture
def connection_refused():
    return TransportError("Connection error: refused")
