"""Container backend building one image and one container per instance."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Final

from deployer.adapters import ContainerEngineError, ContainerEnginePort, ContainerImageBuildError, ResourceUsage
from deployer.domain import (
    BACKEND_KIND_CONTAINER,
    ApplicationInstance,
    BackendHandle,
    BackendOperationError,
    BuildError,
    DeploymentTimeoutError,
    ResourceLimits,
    RuntimeDefinition,
)
from deployer.runtimes import ENTRY_FILENAMES
from deployer.workspace import WorkspaceManager

from .interfaces import BackendStrategyPort
from .log_files import backend_append_log_lines, backend_read_log_tail

logger = logging.getLogger(__name__)

READINESS_TIMEOUT_SECONDS: Final[float] = 30.0
READINESS_POLL_SECONDS: Final[float] = 2.0
CONTAINER_STOP_TIMEOUT_SECONDS: Final[int] = 10
FAILURE_LOG_TAIL_LINES: Final[int] = 20
SAVED_LOG_TAIL_LINES: Final[int] = 1000

DOCKERIGNORE_CONTENT: Final[str] = ".env\nlogs/\n.deployer/\nDockerfile\n.dockerignore\n"

# the restart policy turns a crashing app into `restarting`, which never becomes ready
_TERMINAL_CONTAINER_STATUSES: Final[frozenset[str]] = frozenset({"exited", "dead", "restarting"})


def backend_render_dockerfile(definition: RuntimeDefinition, workspace: Path, port: int) -> str:
    """Render the Dockerfile for a runtime and workspace.

    Manifest copy and install steps are emitted only when the manifest exists
    in the workspace, so single-file payloads build without them.

    Args:
        definition: Runtime providing the base image.
        workspace: Materialized workspace used to detect manifests.
        port: Port the application listens on inside the container.

    Returns:
        str: Dockerfile content.

    Raises:
        BuildError: Raised when the runtime has no container image or unknown language.
    """

    if not definition.container_image:
        raise BuildError(f"runtime {definition.runtime_id} has no container image")

    def has(manifest: str) -> bool:
        return (workspace / manifest).exists()

    entry_filename = ENTRY_FILENAMES.get(definition.language)
    lines = [f"FROM {definition.container_image}"]
    language = definition.language

    if language == "php":
        lines += [
            "COPY . /var/www/html/",
            (
                f"RUN sed -ri -e 's/Listen 80$/Listen {port}/' /etc/apache2/ports.conf"
                f" && sed -ri -e 's/:80>/:{port}>/' /etc/apache2/sites-available/000-default.conf"
            ),
            f"EXPOSE {port}",
            'CMD ["apache2-foreground"]',
        ]
    elif language == "nodejs":
        lines.append("WORKDIR /app")
        if has("package.json"):
            lines += ["COPY package*.json ./", "RUN npm install"]
        lines += ["COPY . .", f"EXPOSE {port}"]
        command = ["npm", "start"] if has("package.json") else ["node", entry_filename]
        lines.append(f"CMD {json.dumps(command)}")
    elif language == "python":
        lines.append("WORKDIR /app")
        if has("requirements.txt"):
            lines += ["COPY requirements.txt .", "RUN pip install --no-cache-dir -r requirements.txt"]
        lines += ["COPY . .", f"EXPOSE {port}", f"CMD {json.dumps(['python', entry_filename, str(port)])}"]
    elif language == "ruby":
        lines.append("WORKDIR /app")
        if has("Gemfile"):
            lines += ["COPY Gemfile* ./", "RUN bundle install"]
        lines += [
            "COPY . .",
            f"EXPOSE {port}",
            f"CMD {json.dumps(['ruby', entry_filename, '-o', '0.0.0.0', '-p', str(port)])}",
        ]
    elif language == "go":
        lines.append("WORKDIR /app")
        if has("go.mod"):
            lines += ["COPY go.* ./", "RUN go mod download"]
        build_target = "." if has("go.mod") else entry_filename
        lines += ["COPY . .", f"RUN go build -o app {build_target}", f"EXPOSE {port}", 'CMD ["./app"]']
    elif language == "java":
        lines.append("WORKDIR /app")
        if has("pom.xml"):
            lines += [
                "COPY pom.xml .",
                "RUN mvn dependency:resolve",
                "COPY src ./src",
                "RUN mvn clean package",
                f"EXPOSE {port}",
                'CMD ["java", "-jar", "target/app.jar"]',
            ]
        else:
            lines += ["COPY . .", f"EXPOSE {port}", f"CMD {json.dumps(['java', entry_filename])}"]
    else:
        raise BuildError(f"no container template for language {language}")

    return "\n".join(lines) + "\n"


class ContainerBackend(BackendStrategyPort):
    """Backend running each instance as a dedicated container."""

    backend_kind = BACKEND_KIND_CONTAINER

    def __init__(
        self,
        container_engine: ContainerEnginePort,
        workspace_manager: WorkspaceManager,
        image_prefix: str = "deployer-app",
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize backend dependencies.

        Args:
            container_engine: Engine adapter.
            workspace_manager: Workspace manager resolving log paths.
            image_prefix: Prefix for image tags and container names.
            sleep: Sleep function used between readiness polls.
            monotonic: Clock used for the readiness deadline.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing or prefix is blank.
        """

        if container_engine is None:
            raise ValueError("container_engine must not be None")
        if workspace_manager is None:
            raise ValueError("workspace_manager must not be None")
        if not image_prefix.strip():
            raise ValueError("image_prefix must not be blank")

        self._container_engine = container_engine
        self._workspace_manager = workspace_manager
        self._image_prefix = image_prefix.strip()
        self._sleep = sleep
        self._monotonic = monotonic

    def backend_image_tag(self, instance_id: str) -> str:
        """Return the image tag and container name used for an instance."""

        return f"{self._image_prefix}-{instance_id}"

    def backend_build(self, definition: RuntimeDefinition, instance: ApplicationInstance) -> BackendHandle:
        workspace = instance.workspace
        dockerfile = backend_render_dockerfile(definition, workspace, instance.port)
        try:
            (workspace / "Dockerfile").write_text(dockerfile, encoding="utf-8")
            (workspace / ".dockerignore").write_text(DOCKERIGNORE_CONTENT, encoding="utf-8")
        except OSError as error:
            raise BuildError(f"failed to write Dockerfile for {instance.instance_id}: {error}") from error

        image_tag = self.backend_image_tag(instance.instance_id)
        try:
            self._container_engine.adapter_build_image(workspace, image_tag)
        except ContainerImageBuildError as error:
            detail = f"\n{error.engine_output}" if error.engine_output else ""
            raise BuildError(f"{error}{detail}") from error
        except ContainerEngineError as error:
            raise BuildError(str(error)) from error

        logger.info("Built image %s for instance %s", image_tag, instance.instance_id)
        return BackendHandle(backend_kind=self.backend_kind, image_tag=image_tag)

    def backend_start(self, handle: BackendHandle, instance: ApplicationInstance) -> BackendHandle:
        image_tag = handle.image_tag or self.backend_image_tag(instance.instance_id)
        try:
            # a container left behind by an earlier run would block the name
            self._container_engine.adapter_remove_container(image_tag, 0)
            container_id = self._container_engine.adapter_run_container(
                image_tag=image_tag,
                name=image_tag,
                port=instance.port,
                environment={**instance.environment, "PORT": str(instance.port)},
                memory_mb=instance.limits.memory_mb,
                cpu_cores=instance.limits.cpu_cores,
            )
        except ContainerEngineError as error:
            raise BuildError(str(error)) from error

        try:
            self._backend_wait_ready(container_id, instance)
        except (BuildError, DeploymentTimeoutError):
            self._backend_discard_container(container_id)
            raise

        logger.info("Container %s ready for instance %s on port %s", container_id[:12], instance.instance_id, instance.port)
        return replace(handle, reference=container_id, image_tag=image_tag)

    def backend_stop(self, handle: BackendHandle, instance: ApplicationInstance) -> None:
        if handle.reference is None:
            return
        self._backend_save_final_logs(handle.reference, instance)
        try:
            removed = self._container_engine.adapter_remove_container(handle.reference, CONTAINER_STOP_TIMEOUT_SECONDS)
        except ContainerEngineError as error:
            raise BackendOperationError(f"failed to stop container for {instance.instance_id}: {error}") from error
        if not removed:
            logger.warning("Container %s for %s was already gone", handle.reference[:12], instance.instance_id)

    def backend_logs(self, instance: ApplicationInstance, lines: int) -> list[str]:
        if instance.handle is not None and instance.handle.reference is not None:
            try:
                return self._container_engine.adapter_container_logs(instance.handle.reference, lines)
            except ContainerEngineError as error:
                raise BackendOperationError(f"failed to read logs for {instance.instance_id}: {error}") from error
        try:
            return backend_read_log_tail(self._workspace_manager.workspace_log_path(instance.instance_id), lines)
        except OSError as error:
            raise BackendOperationError(f"failed to read logs for {instance.instance_id}: {error}") from error

    def backend_update_resources(self, handle: BackendHandle, limits: ResourceLimits) -> bool:
        if handle.reference is None:
            return False
        try:
            self._container_engine.adapter_update_container(handle.reference, limits.memory_mb, limits.cpu_cores)
        except ContainerEngineError as error:
            raise BackendOperationError(f"failed to update container resources: {error}") from error
        return True

    def backend_stats(self, handle: BackendHandle, instance: ApplicationInstance) -> ResourceUsage:
        if handle.reference is None:
            raise BackendOperationError(f"container for {instance.instance_id} is not running")
        try:
            return self._container_engine.adapter_container_stats(handle.reference)
        except ContainerEngineError as error:
            raise BackendOperationError(f"failed to read stats for {instance.instance_id}: {error}") from error

    def backend_cleanup(self, instance: ApplicationInstance) -> bool:
        image_tag = self.backend_image_tag(instance.instance_id)
        try:
            return self._container_engine.adapter_remove_image(image_tag)
        except ContainerEngineError as error:
            logger.warning("Image %s could not be removed: %s", image_tag, error)
            return False

    def _backend_wait_ready(self, container_id: str, instance: ApplicationInstance) -> None:
        """Poll the container until it is ready.

        Args:
            container_id: Started container id.
            instance: Instance being started.

        Raises:
            BuildError: Raised when the container exits or cannot be inspected.
            DeploymentTimeoutError: Raised when readiness is not reached in time.
        """

        deadline = self._monotonic() + READINESS_TIMEOUT_SECONDS
        while True:
            try:
                state = self._container_engine.adapter_container_state(container_id)
            except ContainerEngineError as error:
                raise BuildError(str(error)) from error

            if state.status in _TERMINAL_CONTAINER_STATUSES:
                raise BuildError(
                    f"Container exited with code {state.exit_code}: {self._backend_log_excerpt(container_id)}"
                )
            if state.health is None and state.status == "running":
                return
            if state.health == "healthy":
                return

            if self._monotonic() >= deadline:
                raise DeploymentTimeoutError(
                    f"Instance {instance.instance_id} not ready within {READINESS_TIMEOUT_SECONDS:.0f}s "
                    f"(status={state.status}, health={state.health})"
                )
            self._sleep(READINESS_POLL_SECONDS)

    def _backend_log_excerpt(self, container_id: str) -> str:
        try:
            tail = self._container_engine.adapter_container_logs(container_id, FAILURE_LOG_TAIL_LINES)
        except ContainerEngineError as error:
            return f"logs unavailable ({error})"
        return "\n".join(tail) if tail else "no output"

    def _backend_discard_container(self, container_id: str) -> None:
        try:
            self._container_engine.adapter_remove_container(container_id, 0)
        except ContainerEngineError as error:
            logger.error("Failed to remove partially started container %s: %s", container_id[:12], error)

    def _backend_save_final_logs(self, container_id: str, instance: ApplicationInstance) -> None:
        try:
            tail = self._container_engine.adapter_container_logs(container_id, SAVED_LOG_TAIL_LINES)
            backend_append_log_lines(
                self._workspace_manager.workspace_log_path(instance.instance_id),
                f"container {container_id[:12]} stopped",
                tail,
            )
        except (ContainerEngineError, OSError) as error:
            logger.warning("Final logs of %s were not saved: %s", instance.instance_id, error)
