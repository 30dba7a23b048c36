import struct

from dbmanager.models import (
    ContainerRecord,
    CreateResult,
    Dialect,
    LogLine,
    LogOutput,
    Parsed,
    Raw,
    RuntimeEndpoint,
)
from dbmanager.services.dialect import Operation
from dbmanager.services.gateway import RuntimeGateway


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


class FakeTransport:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def send(self, endpoint, request):
        self.requests.append((endpoint, request))
        return self.response


DOCKER = RuntimeEndpoint("/var/run/docker.sock", Dialect.DOCKER)
PODMAN = RuntimeEndpoint("/run/podman/podman.sock", Dialect.PODMAN)


def build_gateway(response):
    transport = FakeTransport(response)
    return RuntimeGateway(logger=DummyLogger(), transport=transport), transport


def test_invoke_parses_and_normalizes_json():
    gateway, transport = build_gateway(
        b"HTTP/1.1 201 Created\r\nContent-Type: application/json\r\n\r\n"
        b'{"id":"abc123","warnings":[]}'
    )

    result = gateway.invoke(
        PODMAN,
        Operation.CREATE_CONTAINER,
        {"name": "db-mariadb-shop", "spec": {"Image": "mariadb:11"}},
    )

    assert result.ok
    assert result.payload == Parsed(CreateResult(id="abc123", warnings=[]))
    _, request = transport.requests[0]
    assert request.method == "POST"
    assert request.path == "/v4.0.0/libpod/containers/create"
    assert b'"Name": "db-mariadb-shop"' in request.body


def test_invoke_normalizes_container_list():
    gateway, _ = build_gateway(
        b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n\r\n"
        b'[{"Id":"abc","Names":["/db-postgresql-app"],"State":"running"}]'
    )

    result = gateway.invoke(DOCKER, Operation.LIST_CONTAINERS, {"all": True})

    assert isinstance(result.payload.value[0], ContainerRecord)
    assert result.payload.value[0].name == "db-postgresql-app"


def test_unparseable_json_becomes_raw_text():
    gateway, _ = build_gateway(
        b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n\r\n{\"broken\": \x01"
    )

    result = gateway.invoke(DOCKER, Operation.INFO)

    assert result.payload == Raw('{"broken":')


def test_non_json_body_is_sanitized_raw_text():
    gateway, _ = build_gateway(
        b"HTTP/1.1 500 Internal Server Error\r\nContent-Type: text/plain\r\n\r\nboom\x00\r\n"
    )

    result = gateway.invoke(DOCKER, Operation.INFO)

    assert not result.ok
    assert result.status_code == 500
    assert result.payload == Raw("boom")


def test_error_json_is_not_normalized():
    gateway, _ = build_gateway(
        b"HTTP/1.1 404 Not Found\r\nContent-Type: application/json\r\n\r\n"
        b'{"message":"No such container: abc"}'
    )

    result = gateway.invoke(DOCKER, Operation.INSPECT_CONTAINER, {"container_id": "abc"})

    assert result.status_code == 404
    assert result.payload == Parsed({"message": "No such container: abc"})


def test_logs_are_demultiplexed_from_chunked_body():
    frame = struct.pack(">BxxxI", 1, 6) + b"ready\n"
    chunk = f"{len(frame):x}\r\n".encode() + frame + b"\r\n0\r\n\r\n"
    gateway, transport = build_gateway(
        b"HTTP/1.1 200 OK\r\nContent-Type: application/vnd.docker.raw-stream\r\n"
        b"Transfer-Encoding: chunked\r\n\r\n" + chunk
    )

    result = gateway.invoke(DOCKER, Operation.CONTAINER_LOGS, {"container_id": "abc", "tail": 10})

    assert result.payload == LogOutput([LogLine("stdout", "ready")])
    _, request = transport.requests[0]
    assert request.path.startswith("/v1.41/containers/abc/logs?")
    assert "tail=10" in request.path


def test_container_named_like_logs_is_parsed_as_json():
    gateway, transport = build_gateway(
        b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n\r\n"
        b'{"Id":"abc","Name":"/logstash","State":{"Status":"running"}}'
    )

    result = gateway.invoke(DOCKER, Operation.INSPECT_CONTAINER, {"container_id": "logstash"})

    _, request = transport.requests[0]
    assert request.path == "/v1.41/containers/logstash/json"
    assert isinstance(result.payload, Parsed)
    assert result.payload.value.name == "logstash"


def test_json_content_type_is_matched_case_insensitively():
    gateway, _ = build_gateway(
        b"HTTP/1.1 404 Not Found\r\nContent-Type: Application/JSON; charset=utf-8\r\n\r\n"
        b'{"message":"no such container"}'
    )

    result = gateway.invoke(PODMAN, Operation.INSPECT_CONTAINER, {"container_id": "abc"})

    assert result.payload == Parsed({"message": "no such container"})
