"""Runtime gateway: translate, send, decode and route one runtime call."""

import json
from typing import Any, Mapping, Optional

from dbmanager.models import (
    LogOutput,
    NormalizedResult,
    Parsed,
    Payload,
    Raw,
    RawSocketResponse,
    RuntimeEndpoint,
)
from dbmanager.services.dialect import DialectTranslator, Operation
from dbmanager.services.log_demux import demultiplex
from dbmanager.services.response_decoder import (
    ResponseDecoder,
    sanitize_json_text,
    sanitize_text,
)
from dbmanager.services.socket_transport import SocketTransport


class RuntimeGateway:
    """Request/response façade over the runtime socket.

    Holds no per-call state, so one instance can serve concurrent callers.
    Non-success statuses are returned to the caller rather than raised.
    """

    def __init__(
        self,
        logger,
        transport: Optional[SocketTransport] = None,
        decoder: Optional[ResponseDecoder] = None,
        translator: Optional[DialectTranslator] = None,
    ):
        self.logger = logger
        self.transport = transport or SocketTransport(logger=logger)
        self.decoder = decoder or ResponseDecoder(logger=logger)
        self.translator = translator or DialectTranslator()

    def invoke(
        self,
        endpoint: RuntimeEndpoint,
        operation: Operation,
        params: Optional[Mapping[str, Any]] = None,
    ) -> NormalizedResult:
        translated = self.translator.translate(endpoint.dialect, operation, params)
        self.logger.debug(
            "%s %s (%s) via %s",
            translated.method,
            translated.target,
            endpoint.dialect.value,
            endpoint.socket_path,
        )

        raw = self.transport.send(endpoint, translated.to_http_request())
        response = self.decoder.decode(raw)
        payload = self._route_body(operation, response)

        if isinstance(payload, Parsed) and 200 <= response.status_code < 300:
            payload = Parsed(
                self.translator.normalize_payload(endpoint.dialect, operation, payload.value)
            )

        return NormalizedResult(
            status_code=response.status_code,
            status_text=response.status_text,
            headers=response.headers,
            payload=payload,
        )

    def _route_body(self, operation: Operation, response: RawSocketResponse) -> Payload:
        if operation == Operation.CONTAINER_LOGS:
            return LogOutput(demultiplex(response.body))

        if "application/json" in response.content_type.lower() and response.body:
            return self.parse_json(response.body)

        return Raw(sanitize_text(response.body))

    def parse_json(self, body: bytes) -> Payload:
        try:
            return Parsed(json.loads(sanitize_json_text(body)))
        except ValueError as exc:
            self.logger.debug("JSON parse error, keeping raw text: %s", exc)
            self.logger.debug("Raw body (first 200 chars): %r", body[:200])
            return Raw(sanitize_text(body))
