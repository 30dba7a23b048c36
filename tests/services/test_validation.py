import pytest

from dbmanager.errors import ValidationError
from dbmanager.models import DeploymentRequest, EngineType
from dbmanager.services.validation import ValidationService


def build_request(**overrides):
    values = {
        "engine": EngineType.POSTGRESQL,
        "name": "test-db",
        "version": "16",
        "root_password": "secret",
        "port": 15000,
    }
    values.update(overrides)
    return DeploymentRequest(**values)


def test_valid_request_passes():
    ValidationService().validate_deployment(build_request())


@pytest.mark.parametrize("name", ["", "1db", "has space", "a" * 51, "semi;colon"])
def test_invalid_names_are_rejected(name):
    with pytest.raises(ValidationError):
        ValidationService().validate_name(name)


@pytest.mark.parametrize("port", [80, 1023, 65536, "5432", True])
def test_invalid_ports_are_rejected(port):
    with pytest.raises(ValidationError):
        ValidationService().validate_port(port)


def test_port_bounds_are_inclusive():
    service = ValidationService()

    service.validate_port(1024)
    service.validate_port(65535)


def test_invalid_version_tag_is_rejected():
    with pytest.raises(ValidationError, match="Invalid image version"):
        ValidationService().validate_version("16; rm -rf /")


def test_unknown_engine_is_rejected():
    with pytest.raises(ValidationError, match="Unsupported database type"):
        ValidationService().validate_deployment(build_request(engine="oracle"))


def test_root_password_is_required():
    with pytest.raises(ValidationError, match="Root password"):
        ValidationService().validate_deployment(build_request(root_password=""))


def test_user_password_requires_username():
    with pytest.raises(ValidationError, match="without a username"):
        ValidationService().validate_deployment(build_request(password="pw"))


def test_environment_keys_are_checked():
    with pytest.raises(ValidationError, match="Invalid environment variable"):
        ValidationService().validate_deployment(build_request(environment={"BAD-KEY": "1"}))


def test_storage_path_must_be_absolute_and_not_root():
    service = ValidationService()

    with pytest.raises(ValidationError, match="absolute"):
        service.validate_deployment(build_request(persistent_storage=True, storage_path="data"))
    with pytest.raises(ValidationError, match="filesystem root"):
        service.validate_deployment(build_request(persistent_storage=True, storage_path="/"))
    with pytest.raises(ValidationError, match="requires a storage path"):
        service.validate_deployment(build_request(persistent_storage=True))
