"""Unit tests for the instrumentation module.

Tests use unittest.mock for OTel interactions.  ``opentelemetry-api``
is a test dependency so we can import ``SpanKind`` / ``StatusCode``
directly for assertion accuracy.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import geminal.instrumentation as inst
from geminal.instrumentation import (
    exchange_span,
    record_error,
    record_response,
    uninstrument,
)
from geminal.session import ChatSession
from tests.conftest import FakeTransport, error_unit, text_unit, wire


@pytest.fixture(autouse=True)
def _reset_tracer():
    """Ensure _tracer is reset to None before and after each test."""
    inst._tracer = None
    yield
    inst._tracer = None


# -------------------------------------------------------------------
# instrument()
# -------------------------------------------------------------------


class TestInstrument:
    def test_raises_without_otel_installed(self):
        with patch(
            "importlib.util.find_spec", return_value=None
        ):
            with pytest.raises(
                ImportError, match="pip install"
            ):
                inst.instrument()

    def _mock_otel(self, mock_trace):
        """Patch find_spec + sys.modules for a mock OTel env."""
        return (
            patch(
                "importlib.util.find_spec",
                return_value=MagicMock(),
            ),
            patch.dict(
                "sys.modules",
                {
                    "opentelemetry": MagicMock(
                        trace=mock_trace
                    ),
                    "opentelemetry.trace": mock_trace,
                },
            ),
        )

    def test_sets_global_tracer(self):
        mock_tracer = MagicMock()
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = mock_tracer
        mock_trace.NoOpTracer = type("NoOpTracer", (), {})

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            inst.instrument()

        assert inst._tracer is mock_tracer
        mock_trace.get_tracer.assert_called_once_with("geminal")

    def test_logs_warning_for_noop_tracer(self, caplog):
        NoOpTracer = type("NoOpTracer", (), {})
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = NoOpTracer()
        mock_trace.NoOpTracer = NoOpTracer

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            with caplog.at_level(
                logging.INFO,
                logger="geminal.instrumentation",
            ):
                inst.instrument()

        assert any(
            "No TracerProvider configured" in r.message
            for r in caplog.records
        )


class TestUninstrument:
    def test_clears_tracer(self):
        inst._tracer = MagicMock()
        uninstrument()
        assert inst._tracer is None


# -------------------------------------------------------------------
# exchange_span
# -------------------------------------------------------------------


class TestExchangeSpan:
    @pytest.fixture
    def mock_span(self):
        span = MagicMock()
        tracer = MagicMock()
        tracer.start_as_current_span.return_value.__enter__ = (
            MagicMock(return_value=span)
        )
        tracer.start_as_current_span.return_value.__exit__ = (
            MagicMock(return_value=False)
        )
        inst._tracer = tracer
        return span

    @pytest.mark.asyncio
    async def test_yields_none_without_tracer(self):
        async with exchange_span("m") as s:
            assert s is None

    @pytest.mark.asyncio
    async def test_creates_client_span(self, mock_span):
        async with exchange_span("gemini-2.5-flash", "s1") as s:
            assert s is mock_span

        inst._tracer.start_as_current_span.assert_called_once_with(
            "chat gemini-2.5-flash",
            kind=SpanKind.CLIENT,
            attributes={
                "gen_ai.operation.name": "chat",
                "gen_ai.provider.name": "gcp.gemini",
                "gen_ai.request.model": "gemini-2.5-flash",
                "gen_ai.conversation.id": "s1",
            },
        )

    @pytest.mark.asyncio
    async def test_session_records_response_size(self, mock_span, config):
        session = ChatSession(config, FakeTransport([wire(text_unit("ab", "c"))]))
        [e async for e in session.stream("hi")]

        mock_span.set_attribute.assert_any_call("geminal.response.fragments", 2)
        mock_span.set_attribute.assert_any_call("geminal.response.characters", 3)

    @pytest.mark.asyncio
    async def test_session_records_service_error(self, mock_span, config):
        session = ChatSession(config, FakeTransport([error_unit("boom").encode()]))
        [e async for e in session.stream("hi")]

        mock_span.set_status.assert_called_once_with(StatusCode.ERROR, "boom")
        mock_span.set_attribute.assert_any_call("error.type", "ServiceStreamError")


# -------------------------------------------------------------------
# record_response / record_error
# -------------------------------------------------------------------


class TestRecordHelpers:
    def test_record_response_noop_on_none_span(self):
        record_response(None, "text", 1)

    def test_record_error_sets_status_and_records_exception(self):
        span = MagicMock()
        exc = RuntimeError("boom")
        record_error(span, exc)

        span.set_status.assert_called_once_with(StatusCode.ERROR, "boom")
        span.record_exception.assert_called_once_with(exc)
        span.set_attribute.assert_called_once_with("error.type", "RuntimeError")

    def test_record_error_noop_on_none_span(self):
        record_error(None, RuntimeError("boom"))
