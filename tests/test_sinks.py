"""Tests for notification sinks."""

import io

import pytest

from memreport.sinks import CaptureSink, Delivery, DeliveryError, NullSink, StreamSink


def test_null_sink_accepts_anything():
    """Test NullSink swallows reports without error."""
    NullSink().deliver("subject", "body", timeout=1.0)


def test_capture_sink_records_in_order():
    """Test CaptureSink keeps deliveries oldest first."""
    sink = CaptureSink()

    sink.deliver("one", "first")
    sink.deliver("two", "second", timeout=5.0)

    assert sink.deliveries == [Delivery("one", "first"), Delivery("two", "second", 5.0)]


def test_capture_sink_returns_copy():
    """Test callers cannot mutate the recorded deliveries."""
    sink = CaptureSink()
    sink.deliver("one", "first")

    sink.deliveries.clear()

    assert len(sink.deliveries) == 1


class TestStreamSink:
    """Tests for StreamSink."""

    def test_writes_subject_and_body(self):
        """Test the subject heads the body on the stream."""
        stream = io.StringIO()

        StreamSink(stream).deliver("Memory snapshot [from db01]", "line1\r\nline2")

        assert stream.getvalue() == "Memory snapshot [from db01]\nline1\r\nline2\n"

    def test_addresses_in_heading(self):
        """Test sender and recipient are echoed into the heading."""
        stream = io.StringIO()
        sink = StreamSink(stream, sender="monitor@example.org", recipient="ops@example.org")

        sink.deliver("subject", "body")

        assert stream.getvalue().splitlines()[0] == (
            "subject (monitor@example.org -> ops@example.org)"
        )

    def test_defaults_to_stdout(self, capsys):
        """Test reports go to stdout without an explicit stream."""
        StreamSink().deliver("subject", "body")

        assert capsys.readouterr().out == "subject\nbody\n"

    def test_closed_stream_raises(self):
        """Test write failures surface to the caller."""
        stream = io.StringIO()
        stream.close()

        with pytest.raises(ValueError):
            StreamSink(stream).deliver("subject", "body")


def test_delivery_error_message():
    """Test DeliveryError names the report and the reason."""
    error = DeliveryError("Memory snapshot [from db01]", "refused")

    assert error.subject == "Memory snapshot [from db01]"
    assert str(error) == "Could not deliver 'Memory snapshot [from db01]': refused"
