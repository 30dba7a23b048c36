import struct

from dbmanager.models import LogLine
from dbmanager.services.log_demux import demultiplex, demultiplex_text


def frame(stream_type, payload):
    return struct.pack(">BxxxI", stream_type, len(payload)) + payload


def test_demultiplex_reads_stdout_and_stderr_frames():
    body = frame(1, b"ready for connections\n") + frame(2, b"warning: low memory\n")

    assert demultiplex(body) == [
        LogLine("stdout", "ready for connections"),
        LogLine("stderr", "warning: low memory"),
    ]


def test_demultiplex_splits_multiline_payloads_and_drops_blank_lines():
    body = frame(1, b"one\n\n  \ntwo\n")

    assert demultiplex_text(body) == "one\ntwo"


def test_oversized_length_falls_back_to_plain_text():
    good = frame(1, b"first\n")
    bad = struct.pack(">BxxxI", 1, 10_000) + b"rest of\nthe stream"

    lines = demultiplex(good + bad)

    assert lines[0] == LogLine("stdout", "first")
    assert [line.stream for line in lines[1:]] == ["raw", "raw"]
    assert lines[-1].text == "the stream"


def test_unknown_stream_type_falls_back_to_plain_text():
    body = b"2024-01-01 LOG: database system is ready\n2024-01-01 LOG: listening\n"

    assert demultiplex_text(body) == (
        "2024-01-01 LOG: database system is ready\n2024-01-01 LOG: listening"
    )


def test_short_tail_is_read_as_text():
    body = frame(2, b"error\n") + b"tail"

    assert demultiplex(body) == [LogLine("stderr", "error"), LogLine("raw", "tail")]


def test_empty_body_yields_no_lines():
    assert demultiplex(b"") == []
    assert demultiplex_text(b"") == ""


def test_invalid_utf8_is_replaced_not_raised():
    lines = demultiplex(frame(1, b"bad \xff byte\n"))

    assert lines == [LogLine("stdout", "bad � byte")]
