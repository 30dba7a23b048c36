"""Deployment orchestration: pull, identify, prepare storage, create, start."""

import os
from typing import Callable, Optional

from dbmanager.constants import STORAGE_DIR_MODE
from dbmanager.errors import (
    DbManagerError,
    DirectoryExistsError,
    FileSystemError,
    OrchestrationError,
)
from dbmanager.errors_catalog import actionable_error
from dbmanager.models import (
    ContainerRecord,
    DeploymentRequest,
    DeploymentResult,
    DeploymentRun,
    DeploymentStage,
    FailureStage,
    ImageIdentity,
)
from dbmanager.services.container_spec import ContainerSpecBuilder
from dbmanager.services.filesystem import FileSystemService
from dbmanager.services.image_identity import ImageIdentityService
from dbmanager.services.runtime_api import RuntimeApi
from dbmanager.services.validation import ValidationService


class DeploymentOrchestrator:
    """Runs one deployment through its stages.

    Stages advance strictly in order; any failure moves the run to `failed`
    tagged with the stage that broke. Only a start failure leaves a container
    behind, and it is reported with its id so the caller can retry the start.
    """

    def __init__(
        self,
        runtime: RuntimeApi,
        identity_service: ImageIdentityService,
        filesystem_service: FileSystemService,
        spec_builder: ContainerSpecBuilder,
        validation_service: ValidationService,
        logger,
        console,
        storage_mode: str = STORAGE_DIR_MODE,
    ):
        self.runtime = runtime
        self.identity_service = identity_service
        self.filesystem_service = filesystem_service
        self.spec_builder = spec_builder
        self.validation_service = validation_service
        self.logger = logger
        self.console = console
        self.storage_mode = storage_mode

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        self.validation_service.validate_deployment(request)

        run = DeploymentRun(
            container_name=self.spec_builder.container_name(request),
            image=self.spec_builder.image_for(request),
        )
        self.logger.info("Deploying %s as %s", run.image, run.container_name)

        self._run_stage(run, FailureStage.PULL, DeploymentStage.IMAGE_PULLED, self._pull)
        self._run_stage(run, FailureStage.DISCOVER, DeploymentStage.USER_DISCOVERED, self._discover)
        self._run_stage(
            run,
            FailureStage.STORAGE,
            DeploymentStage.STORAGE_READY,
            lambda current: self._prepare_storage(current, request),
        )
        self._run_stage(
            run,
            FailureStage.CREATE,
            DeploymentStage.CREATED,
            lambda current: self._create(current, request),
        )
        self._run_stage(run, FailureStage.START, DeploymentStage.STARTED, self._start)
        run.advance(DeploymentStage.DONE)

        self.console.print(
            f"[green]Deployed {run.container_name} ({run.container_id[:12]}).[/green]"
        )
        return DeploymentResult(
            container_id=run.container_id,
            container_name=run.container_name,
            image=run.image,
            identity=run.identity,
            warnings=list(run.warnings),
            run=run,
        )

    def retry_start(self, container_id: str):
        """Starts a container left behind by a failed start stage."""
        self.logger.info("Retrying start of container %s", container_id)
        try:
            self.runtime.start_container(container_id)
        except DbManagerError as exc:
            raise OrchestrationError(
                FailureStage.START.value,
                actionable_error("created_not_started", container_id=container_id, reason=str(exc)),
                container_id=container_id,
            ) from exc
        self.console.print(f"[green]Started container {container_id[:12]}.[/green]")

    def _run_stage(
        self,
        run: DeploymentRun,
        failure_stage: FailureStage,
        next_stage: DeploymentStage,
        callback: Callable[[DeploymentRun], Optional[str]],
    ):
        self.logger.debug("Stage %s -> %s", run.stage.value, next_stage.value)
        try:
            detail = callback(run)
        except OrchestrationError as exc:
            run.fail(failure_stage, exc.message)
            exc.run = run
            self.logger.error(str(exc))
            raise
        except DbManagerError as exc:
            run.fail(failure_stage, str(exc))
            error = OrchestrationError(
                failure_stage.value, str(exc), container_id=run.container_id, run=run
            )
            self.logger.error(str(error))
            raise error from exc

        run.advance(next_stage, detail or "")

    def _pull(self, run: DeploymentRun) -> str:
        self.console.print(f"[blue]Pulling image {run.image}...[/blue]")
        records = self.runtime.pull_image(run.image)
        self.console.print(f"[green]Image {run.image} is available.[/green]")
        return f"{len(records)} progress records"

    def _discover(self, run: DeploymentRun) -> str:
        identity = self.identity_service.discover(run.image, self.runtime.dialect)
        run.identity = identity
        if identity.is_fallback:
            run.warnings.append(
                f"Could not determine image user ({identity.source.value}); "
                f"using {identity.uid}:{identity.gid}."
            )
        return f"{identity.uid}:{identity.gid} ({identity.user})"

    def _prepare_storage(self, run: DeploymentRun, request: DeploymentRequest) -> str:
        if not request.wants_storage:
            return "skipped"
        return self.ensure_storage(run, request.storage_path, run.identity)

    def ensure_storage(self, run: DeploymentRun, storage_path: str, identity: ImageIdentity) -> str:
        try:
            if self.filesystem_service.path_exists(storage_path):
                self.logger.info("Storage path exists: %s", storage_path)
                return "exists"

            parent, name = os.path.split(os.path.normpath(storage_path))
            self.console.print(f"[blue]Creating storage directory {storage_path}...[/blue]")
            self.logger.info(
                "Setting directory ownership to %s:%s (%s)",
                identity.uid,
                identity.gid,
                identity.user,
            )
            creation = self.filesystem_service.create_directory(
                parent,
                name,
                mode=self.storage_mode,
                owner=identity.uid,
                group=identity.gid,
            )
        except DirectoryExistsError:
            self.logger.info("Storage path already exists: %s", storage_path)
            return "exists"
        except FileSystemError as exc:
            raise OrchestrationError(
                FailureStage.STORAGE.value,
                actionable_error("storage_failed", path=storage_path, reason=str(exc)),
            ) from exc

        run.warnings.extend(creation.warnings)
        return "created"

    def _find_by_name(self, name: str) -> Optional[ContainerRecord]:
        for record in self.runtime.list_containers(all=True):
            if record.name == name:
                return record
        return None

    def _create(self, run: DeploymentRun, request: DeploymentRequest) -> str:
        existing = self._find_by_name(run.container_name)
        if existing is not None:
            raise OrchestrationError(
                FailureStage.CREATE.value,
                actionable_error(
                    "container_name_conflict",
                    name=run.container_name,
                    container_id=existing.id,
                ),
                container_id=existing.id,
            )

        spec = self.spec_builder.build(request)
        created = self.runtime.create_container(run.container_name, spec)
        run.container_id = created.id
        run.warnings.extend(created.warnings)
        self.logger.info("Created container %s (%s)", run.container_name, created.id)
        return created.id

    def _start(self, run: DeploymentRun) -> str:
        try:
            self.runtime.start_container(run.container_id)
        except DbManagerError as exc:
            raise OrchestrationError(
                FailureStage.START.value,
                actionable_error(
                    "created_not_started",
                    container_id=run.container_id,
                    reason=str(exc),
                ),
                container_id=run.container_id,
            ) from exc
        self.logger.info("Started container %s", run.container_id)
        return run.container_id
