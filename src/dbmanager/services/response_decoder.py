"""Decoding of raw HTTP/1.x responses read from the runtime socket.

The chunked decoder here is deliberately simple: it trusts the chunk size lines
sent by the runtime, ignores chunk extensions and trailers, and does not check
that the declared sizes agree with the surrounding CRLF framing. When a size
line is not hexadecimal or claims more bytes than remain, the rest of the
buffer is kept verbatim instead of raising. This is enough for the Docker and
Podman sockets, but it is not a conformant chunked-transfer decoder.
"""

import re
from typing import Dict, List, Tuple, Union

from dbmanager.errors import DecodeError
from dbmanager.models import RawSocketResponse

_STATUS_LINE = re.compile(r"^HTTP/1\.\d (\d{3})(?: (.*))?$")
_CONTROL_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_ALL_CONTROL_CHARS = re.compile("[\x00-\x1f\x7f-\x9f]")
_ESCAPED_NUL = re.compile(r"\\u0000")


def split_head_body(raw: bytes) -> Tuple[bytes, bytes]:
    """Splits at the first blank line, accepting CRLF and bare-LF framing."""
    candidates = []
    for marker in (b"\r\n\r\n", b"\n\n"):
        index = raw.find(marker)
        if index != -1:
            candidates.append((index, len(marker)))

    if not candidates:
        return raw, b""
    index, width = min(candidates)
    return raw[:index], raw[index + width :]


def dechunk(body: bytes) -> bytes:
    parts: List[bytes] = []
    position = 0

    while position < len(body):
        line_end = body.find(b"\n", position)
        if line_end == -1:
            parts.append(body[position:])
            break

        size_field = body[position:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            parts.append(body[position:])
            break

        if size == 0:
            break

        start = line_end + 1
        end = start + size
        if end > len(body):
            parts.append(body[start:])
            break

        parts.append(body[start:end])
        position = end
        if body.startswith(b"\r\n", position):
            position += 2
        elif body.startswith(b"\n", position):
            position += 1

    return b"".join(parts)


def _as_text(body: Union[bytes, str]) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def sanitize_text(body: Union[bytes, str]) -> str:
    """Drops control bytes the runtime sometimes leaks and normalizes to LF."""
    text = _CONTROL_CHARS.sub("", _as_text(body))
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text.strip()


def sanitize_json_text(body: Union[bytes, str]) -> str:
    """Stricter pass run right before a JSON parse; removes every control char."""
    text = sanitize_text(body)
    text = _ESCAPED_NUL.sub("", text)
    return _ALL_CONTROL_CHARS.sub("", text).strip()


class ResponseDecoder:
    """Turns accumulated socket bytes into status, headers and body."""

    def __init__(self, logger):
        self.logger = logger

    def decode(self, raw: bytes) -> RawSocketResponse:
        head, body = split_head_body(raw)
        lines = re.split(r"\r?\n", head.decode("latin-1"))
        status_line = lines[0].strip() if lines else ""

        match = _STATUS_LINE.match(status_line)
        if not match:
            self.logger.debug("Raw response data: %r", raw[:200])
            raise DecodeError(
                f"Invalid HTTP response from runtime socket: {status_line[:80]!r}"
            )

        headers = self.parse_headers(lines[1:])
        if "chunked" in headers.get("transfer-encoding", "").lower():
            body = dechunk(body)

        return RawSocketResponse(
            status_code=int(match.group(1)),
            status_text=(match.group(2) or "").strip(),
            headers=headers,
            body=body,
        )

    @staticmethod
    def parse_headers(lines: List[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        for line in lines:
            key, separator, value = line.partition(":")
            if not separator or not key.strip():
                continue
            headers[key.strip().lower()] = value.strip()
        return headers
