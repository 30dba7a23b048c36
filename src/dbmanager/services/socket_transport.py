"""Raw HTTP/1.1 over a Unix domain socket."""

import socket
from typing import Dict, List, Optional

from dbmanager.constants import SOCKET_READ_SIZE, SOCKET_TIMEOUT_SECONDS, USER_AGENT
from dbmanager.errors import DecodeError, TransportError, TransportTimeoutError
from dbmanager.errors_catalog import actionable_error
from dbmanager.models import HttpRequest, RuntimeEndpoint


class SocketTransport:
    """Writes one framed request per connection and reads until the peer closes.

    The runtime sockets are driven with `Connection: close`, so every call opens a
    fresh connection and the end of the response is the end of the stream. Nothing
    is retried here.
    """

    def __init__(self, logger, timeout: float = SOCKET_TIMEOUT_SECONDS, socket_module=socket):
        self.logger = logger
        self.timeout = timeout
        self.socket = socket_module

    @staticmethod
    def frame_request(request: HttpRequest) -> bytes:
        headers: Dict[str, str] = {
            "Host": "localhost",
            "Connection": "close",
            "User-Agent": USER_AGENT,
        }
        if request.body or request.method.upper() not in {"GET", "HEAD"}:
            headers["Content-Type"] = "application/json"
            headers["Content-Length"] = str(len(request.body))
        headers.update(request.headers)

        lines: List[str] = [f"{request.method.upper()} {request.path} HTTP/1.1"]
        lines.extend(f"{key}: {value}" for key, value in headers.items())
        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("latin-1") + request.body

    def send(self, endpoint: RuntimeEndpoint, request: HttpRequest) -> bytes:
        self.logger.debug("%s %s via %s", request.method, request.path, endpoint.socket_path)
        payload = self.frame_request(request)

        sock = self.socket.socket(self.socket.AF_UNIX, self.socket.SOCK_STREAM)
        try:
            sock.settimeout(self.timeout)
            self._connect(sock, endpoint)
            try:
                sock.sendall(payload)
                data = self._read_until_close(sock)
            except self.socket.timeout as exc:
                raise TransportTimeoutError(
                    f"Runtime socket {endpoint.socket_path} timed out after {self.timeout}s "
                    f"on {request.method} {request.path}"
                ) from exc
            except OSError as exc:
                raise TransportError(
                    f"Socket error on {endpoint.socket_path}: {exc}"
                ) from exc
        finally:
            sock.close()

        if not data:
            raise DecodeError(
                f"Empty response from runtime socket for {request.method} {request.path}"
            )
        return data

    def _connect(self, sock, endpoint: RuntimeEndpoint):
        try:
            sock.connect(endpoint.socket_path)
        except self.socket.timeout as exc:
            raise TransportTimeoutError(
                f"Timed out connecting to runtime socket {endpoint.socket_path}"
            ) from exc
        except OSError as exc:
            raise TransportError(
                actionable_error(
                    "gateway_unreachable",
                    path=endpoint.socket_path,
                    reason=exc.strerror or str(exc),
                )
            ) from exc

    def _read_until_close(self, sock) -> bytes:
        chunks: List[bytes] = []
        while True:
            chunk: Optional[bytes] = sock.recv(SOCKET_READ_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)
