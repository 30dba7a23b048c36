import json
import struct
import subprocess
from urllib.parse import parse_qs, urlsplit

import pytest

import dbmanager.core as core_module
from dbmanager.core import DatabaseManager
from dbmanager.errors import OrchestrationError, TransportError
from dbmanager.models import (
    ContainerState,
    DeploymentRequest,
    Dialect,
    EngineType,
    FailureStage,
    RuntimeEndpoint,
)
from dbmanager.services.gateway import RuntimeGateway


def http_response(status, body=b"", content_type="application/json", chunked=False):
    reasons = {
        200: "OK",
        201: "Created",
        204: "No Content",
        304: "Not Modified",
        404: "Not Found",
        500: "Internal Server Error",
    }
    head = [f"HTTP/1.1 {status} {reasons[status]}", "Server: Libpod/4.9.3"]
    if content_type:
        head.append(f"Content-Type: {content_type}")
    if chunked:
        head.append("Transfer-Encoding: chunked")
        body = f"{len(body):x}\r\n".encode() + body + b"\r\n0\r\n\r\n" if body else b"0\r\n\r\n"
    return ("\r\n".join(head) + "\r\n\r\n").encode() + body


class FakeRuntimeSocket:
    """Answers raw HTTP requests the way a Podman or Docker socket would."""

    def __init__(self, dialect=Dialect.PODMAN, version="4.9.3", fail_start=False):
        self.dialect = dialect
        self.prefix = "/v4.0.0/libpod" if dialect == Dialect.PODMAN else "/v1.41"
        self.version = version
        self.fail_start = fail_start
        self.containers = {}
        self.requests = []

    def send(self, endpoint, request):
        self.requests.append(request)
        url = urlsplit(request.path)
        query = parse_qs(url.query)
        assert url.path.startswith(self.prefix)
        path = url.path[len(self.prefix):]
        body = json.loads(request.body) if request.body else None

        if path == "/info":
            if self.dialect == Dialect.PODMAN:
                info = {
                    "version": {"Version": self.version, "APIVersion": self.version},
                    "host": {"os": "linux", "arch": "amd64"},
                }
            else:
                info = {"ServerVersion": self.version, "ApiVersion": "1.41", "OSType": "linux"}
            return http_response(200, json.dumps(info).encode())

        if path in ("/images/pull", "/images/create"):
            progress = b'{"status":"Trying to pull"}\n{"status":"Writing manifest"}\n'
            return http_response(200, progress, chunked=True)

        if path == "/containers/json":
            listed = [self._list_entry(cid, data) for cid, data in self.containers.items()]
            return http_response(200, json.dumps(listed).encode())

        if path == "/containers/create":
            name = body.get("Name") if self.dialect == Dialect.PODMAN else query["name"][0]
            container_id = f"{len(self.containers) + 1:064x}"
            self.containers[container_id] = {"name": name, "spec": body, "state": "created"}
            key_id, key_warnings = ("id", "warnings") if self.dialect == Dialect.PODMAN else ("Id", "Warnings")
            return http_response(201, json.dumps({key_id: container_id, key_warnings: []}).encode())

        parts = path.split("/")
        container_id, action = parts[2], parts[3] if len(parts) > 3 else ""
        container = self.containers.get(container_id)
        if container is None:
            return http_response(404, json.dumps({"message": f"no such container: {container_id}"}).encode())

        if action == "start":
            if self.fail_start:
                return http_response(500, b'{"cause":"address already in use","message":"port 15000 is in use"}')
            if container["state"] == "running":
                return http_response(304, content_type=None)
            container["state"] = "running"
            return http_response(204, content_type=None)
        if action == "stop":
            container["state"] = "exited"
            return http_response(204, content_type=None)
        if action == "json":
            return http_response(200, json.dumps(self._inspect(container_id, container)).encode())
        if action == "logs":
            frame = struct.pack(">BxxxI", 1, 22) + b"database system ready\n"
            return http_response(200, frame, content_type="application/vnd.docker.multiplexed-stream")
        if action == "stats":
            stats = {"Stats": [{"CPU": 0.5, "MemUsage": 1024, "MemLimit": 2048, "MemPerc": 50.0, "PIDs": 7}]}
            return http_response(200, json.dumps(stats).encode())
        if request.method == "DELETE":
            del self.containers[container_id]
            return http_response(204, content_type=None)
        return http_response(404, b'{"message":"not found"}')

    @staticmethod
    def _list_entry(container_id, data):
        return {
            "Id": container_id,
            "Names": [data["name"]],
            "Image": data["spec"]["Image"],
            "State": data["state"],
            "Labels": data["spec"]["Labels"],
        }

    @staticmethod
    def _inspect(container_id, data):
        return {
            "Id": container_id,
            "Name": data["name"],
            "ImageName": data["spec"]["Image"],
            "State": {"Status": data["state"]},
            "Config": {"Labels": data["spec"]["Labels"], "Env": data["spec"]["Env"]},
            "HostConfig": data["spec"]["HostConfig"],
        }


class FakeCommandRunner:
    def __init__(self, stdout="uid=999(postgres) gid=999(postgres) groups=999(postgres)"):
        self.stdout = stdout
        self.commands = []

    def run(self, cmd, check=True, capture_output=False, timeout=None):
        self.commands.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout=self.stdout, stderr="")


def build_manager(fake_socket, tmp_path=None, **kwargs):
    socket_path = "/run/podman/podman.sock" if fake_socket.dialect == Dialect.PODMAN else "/var/run/docker.sock"
    command_runner = FakeCommandRunner()
    manager = DatabaseManager(
        endpoint=RuntimeEndpoint(socket_path, fake_socket.dialect),
        gateway=RuntimeGateway(logger=core_module.logger, transport=fake_socket),
        command_runner=command_runner,
        filesystem_root=str(tmp_path) if tmp_path else "/",
        **kwargs,
    )
    manager.identity_service.which = lambda name: f"/usr/bin/{name}"
    return manager, command_runner


def deploy_request(**overrides):
    values = {
        "engine": EngineType.POSTGRESQL,
        "name": "test-db",
        "version": "latest",
        "root_password": "secret",
        "port": 15000,
    }
    values.update(overrides)
    return DeploymentRequest(**values)


def test_podman_deploy_end_to_end():
    fake_socket = FakeRuntimeSocket()
    manager, command_runner = build_manager(fake_socket)

    result = manager.deploy(deploy_request())

    container = fake_socket.containers[result.container_id]
    assert container["name"] == "db-postgresql-test-db"
    assert container["spec"]["Name"] == "db-postgresql-test-db"
    assert container["spec"]["Labels"]["db-manager.managed"] == "true"
    assert container["spec"]["Labels"]["db-manager.database-name"] == "test-db"
    assert container["spec"]["HostConfig"]["PortBindings"] == {"5432/tcp": [{"HostPort": "15000"}]}
    assert command_runner.commands == [["podman", "run", "--rm", "postgres:latest", "id"]]
    assert result.identity.uid == 999

    record = manager.get_container(result.container_id)
    assert record.state == ContainerState.RUNNING
    assert record.is_database()

    databases = manager.list_containers(databases_only=True)
    assert [item.id for item in databases] == [result.container_id]

    pull_request = fake_socket.requests[0]
    assert pull_request.path == "/v4.0.0/libpod/images/pull?reference=postgres%3Alatest"


def test_docker_deploy_puts_name_in_query():
    fake_socket = FakeRuntimeSocket(dialect=Dialect.DOCKER, version="24.0.7")
    manager, command_runner = build_manager(fake_socket)

    result = manager.deploy(deploy_request(engine=EngineType.MARIADB, version="11.2", port=13306))

    create_request = [item for item in fake_socket.requests if "/containers/create" in item.path][0]
    assert create_request.path == "/v1.41/containers/create?name=db-mariadb-test-db"
    assert "Name" not in json.loads(create_request.body)
    assert command_runner.commands[0][0] == "docker"
    assert fake_socket.containers[result.container_id]["state"] == "running"


def test_deploy_with_storage_creates_directory(tmp_path):
    fake_socket = FakeRuntimeSocket()
    manager, _ = build_manager(fake_socket, tmp_path=tmp_path)
    storage = tmp_path / "pgdata"

    result = manager.deploy(deploy_request(persistent_storage=True, storage_path=str(storage)))

    assert storage.is_dir()
    binds = fake_socket.containers[result.container_id]["spec"]["HostConfig"]["Binds"]
    assert binds == [f"{storage}:/var/lib/postgresql/data"]


def test_start_failure_leaves_container_for_retry():
    fake_socket = FakeRuntimeSocket(fail_start=True)
    manager, _ = build_manager(fake_socket)

    with pytest.raises(OrchestrationError) as exc_info:
        manager.deploy(deploy_request())

    error = exc_info.value
    assert error.created_but_not_started
    assert "port 15000 is in use" in error.message
    assert error.run.failed_stage == FailureStage.START
    assert fake_socket.containers[error.container_id]["state"] == "created"

    fake_socket.fail_start = False
    manager.retry_start(error.container_id)
    assert fake_socket.containers[error.container_id]["state"] == "running"


def test_second_deploy_with_same_name_is_rejected():
    fake_socket = FakeRuntimeSocket()
    manager, _ = build_manager(fake_socket)
    first = manager.deploy(deploy_request())

    with pytest.raises(OrchestrationError) as exc_info:
        manager.deploy(deploy_request())

    assert exc_info.value.stage == "create"
    assert exc_info.value.container_id == first.container_id
    assert len(fake_socket.containers) == 1


def test_lifecycle_logs_and_stats():
    fake_socket = FakeRuntimeSocket()
    manager, _ = build_manager(fake_socket)
    container_id = manager.deploy(deploy_request()).container_id

    manager.start_container(container_id)
    manager.stop_container(container_id)
    assert manager.get_container(container_id).state == ContainerState.STOPPED

    assert manager.logs(container_id, tail=10) == "database system ready"
    snapshot = manager.stats(container_id)
    assert snapshot.memory_usage == 1024
    assert snapshot.pids == 7

    manager.remove_container(container_id, force=True)
    assert fake_socket.containers == {}
    delete_request = fake_socket.requests[-1]
    assert delete_request.method == "DELETE"
    assert delete_request.path.endswith("?force=true")


def test_health_reports_version_support():
    healthy, _ = build_manager(FakeRuntimeSocket(version="4.9.3"))
    degraded, _ = build_manager(FakeRuntimeSocket(version="3.4.4"))
    docker, _ = build_manager(FakeRuntimeSocket(dialect=Dialect.DOCKER, version="20.10.17+dfsg1"))

    assert healthy.health()["status"] == "healthy"
    assert degraded.health()["status"] == "degraded"
    assert degraded.health()["version_supported"] is False
    assert docker.health()["status"] == "healthy"


def test_health_reports_unreachable_runtime():
    class BrokenTransport:
        def send(self, endpoint, request):
            raise TransportError("Container runtime is unreachable")

    manager = DatabaseManager(
        endpoint=RuntimeEndpoint("/run/podman/podman.sock", Dialect.PODMAN),
        gateway=RuntimeGateway(logger=core_module.logger, transport=BrokenTransport()),
    )

    report = manager.health()

    assert report["status"] == "unhealthy"
    assert "unreachable" in report["error"]


def test_version_comparison_handles_unknown_versions():
    assert DatabaseManager._version_at_least("20.10.0", "20.10") is True
    assert DatabaseManager._version_at_least("19.03.12", "20.10") is False
    assert DatabaseManager._version_at_least("unknown", "4.0.0") is None


def test_templates_and_directories(tmp_path):
    (tmp_path / "existing").mkdir()
    manager, _ = build_manager(
        FakeRuntimeSocket(),
        tmp_path=tmp_path,
        templates={"postgresql": {"default_version": "16"}},
    )

    engines = {template.engine.value: template for template in manager.templates()}
    assert engines["postgresql"].default_version == "16"

    listing = manager.list_directories(str(tmp_path))
    assert listing.directories == ["existing"]

    creation = manager.create_directory(str(tmp_path), "new-dir", mode="755")
    assert creation.path == str(tmp_path / "new-dir")
