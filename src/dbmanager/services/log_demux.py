"""Demultiplexing of the runtime's framed stdout/stderr log stream.

Each frame is an 8-byte header followed by the payload:
  - byte 0: stream type (0 = stdin, 1 = stdout, 2 = stderr)
  - bytes 1-3: reserved
  - bytes 4-7: payload length (big-endian uint32)

Older runtimes, and containers started with a TTY, send plain text instead.
Anything that does not look like a valid frame is read as plain text from that
offset on, so a stream cut off mid-frame still yields readable lines.
"""

import struct
from typing import List

from dbmanager.models import LogLine

HEADER_SIZE = 8
_HEADER_FORMAT = ">BxxxI"
STREAM_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}


def _plain_lines(data: bytes) -> List[LogLine]:
    text = data.decode("utf-8", errors="replace")
    return [LogLine("raw", line) for line in text.split("\n") if line.strip()]


def demultiplex(body: bytes) -> List[LogLine]:
    lines: List[LogLine] = []
    offset = 0

    while offset < len(body):
        if len(body) - offset < HEADER_SIZE:
            lines.extend(_plain_lines(body[offset:]))
            break

        stream_type, length = struct.unpack_from(_HEADER_FORMAT, body, offset)
        remaining = len(body) - offset - HEADER_SIZE
        if stream_type not in STREAM_NAMES or length <= 0 or length > remaining:
            lines.extend(_plain_lines(body[offset:]))
            break

        offset += HEADER_SIZE
        payload = body[offset : offset + length].decode("utf-8", errors="replace")
        stream = STREAM_NAMES[stream_type]
        lines.extend(LogLine(stream, line) for line in payload.split("\n") if line.strip())
        offset += length

    if not lines:
        return _plain_lines(body)
    return lines


def demultiplex_text(body: bytes) -> str:
    return "\n".join(line.text for line in demultiplex(body))
