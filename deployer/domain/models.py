"""Typed domain models shared across runtime layers.

Every model is a frozen dataclass. Components that change an instance build a
new value with `dataclasses.replace` and hand it to the instance registry, so
a reader holding an `ApplicationInstance` always sees one consistent snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Final, Mapping

INSTANCE_STATUS_BUILDING: Final[str] = "building"
INSTANCE_STATUS_RUNNING: Final[str] = "running"
INSTANCE_STATUS_STOPPING: Final[str] = "stopping"
INSTANCE_STATUS_STOPPED: Final[str] = "stopped"
INSTANCE_STATUS_ERROR: Final[str] = "error"

INSTANCE_STATUSES: Final[frozenset[str]] = frozenset(
    {
        INSTANCE_STATUS_BUILDING,
        INSTANCE_STATUS_RUNNING,
        INSTANCE_STATUS_STOPPING,
        INSTANCE_STATUS_STOPPED,
        INSTANCE_STATUS_ERROR,
    }
)

# statuses in which an instance owns its port
PORT_HOLDING_STATUSES: Final[frozenset[str]] = frozenset(
    {INSTANCE_STATUS_BUILDING, INSTANCE_STATUS_RUNNING, INSTANCE_STATUS_STOPPING}
)

BACKEND_KIND_CONTAINER: Final[str] = "container"
BACKEND_KIND_NATIVE: Final[str] = "native"


@dataclass(frozen=True)
class HealthStatus:
    """Health response contract used by health-check surfaces.

    Attributes:
        status: Overall status text for service health.
        detail: Additional message suitable for operational diagnostics.
    """

    status: str
    detail: str


@dataclass(frozen=True)
class RuntimeDefinition:
    """One supported `(language, version)` runtime.

    Attributes:
        language: Language key (`php`, `nodejs`, `python`, `ruby`, `go`, `java`).
        version: Version label within the language.
        name: Human-readable runtime name.
        default_port: First port probed for new instances.
        run_command: Launch template with `{port}`, `{script}`, `{documentRoot}` placeholders.
        dependencies: Host packages required for native execution.
        container_image: Optional container base image reference.
        image_installed: Whether the container image was pulled in this process.
        host_installed: Whether the host dependencies were installed in this process.
        enabled: Whether new deploys may target the runtime.
    """

    language: str
    version: str
    name: str
    default_port: int
    run_command: str
    dependencies: tuple[str, ...]
    container_image: str | None = None
    image_installed: bool = False
    host_installed: bool = False
    enabled: bool = True

    @property
    def installed(self) -> bool:
        """Return whether either install path has completed."""

        return self.image_installed or self.host_installed

    @property
    def runtime_id(self) -> str:
        """Return the stable `language-version` identifier."""

        return f"{self.language}-{self.version}"


@dataclass(frozen=True)
class ResourceLimits:
    """Per-instance resource caps.

    Attributes:
        memory_mb: Memory cap in megabytes.
        cpu_cores: CPU cap in cores.
        disk_mb: Disk quota in megabytes.
    """

    memory_mb: int = 512
    cpu_cores: float = 1.0
    disk_mb: int = 1024


@dataclass(frozen=True)
class BackendHandle:
    """Reference to what a backend built and started for one instance.

    Attributes:
        backend_kind: Backend that produced the handle.
        reference: Container id or process id once started, else None.
        image_tag: Built image tag (container backend only).
        process_create_time: Process creation timestamp (native backend only).
        command: Launch argv (native backend only).
    """

    backend_kind: str
    reference: str | None = None
    image_tag: str | None = None
    process_create_time: float | None = None
    command: tuple[str, ...] = ()


@dataclass(frozen=True)
class ApplicationInstance:
    """One deployed copy of a user's application.

    Attributes:
        instance_id: Opaque identifier generated at deploy time.
        domain_id: Owning domain reference (opaque foreign key).
        language: Runtime language.
        version: Runtime version.
        port: Assigned host port.
        status: Lifecycle status.
        limits: Resource caps.
        environment: Environment variables injected into the application.
        backend_kind: Backend selected at deploy time.
        workspace_path: Workspace directory path.
        handle: Backend handle, set only while running or stopping.
        created_at_utc: Creation timestamp.
        updated_at_utc: Last mutation timestamp.
        last_error: Last failure message, if any.
        diagnostics: Stage timeline of the latest provisioning run.
    """

    instance_id: str
    domain_id: str
    language: str
    version: str
    port: int
    status: str
    limits: ResourceLimits
    environment: Mapping[str, str]
    backend_kind: str
    workspace_path: str
    created_at_utc: datetime
    updated_at_utc: datetime
    handle: BackendHandle | None = None
    last_error: str | None = None
    diagnostics: tuple[dict[str, Any], ...] = ()

    @property
    def workspace(self) -> Path:
        """Return the workspace directory as a path."""

        return Path(self.workspace_path)


@dataclass(frozen=True)
class DeploymentRequest:
    """Input for one deploy call.

    Attributes:
        domain_id: Owning domain reference.
        language: Requested runtime language.
        version: Requested runtime version.
        source_payload: Entry-point source text, or mapping of relative path to file content.
        environment: Environment variables for the application.
        limits: Optional resource caps; configured defaults apply when omitted.
    """

    domain_id: str
    language: str
    version: str
    source_payload: str | Mapping[str, str]
    environment: Mapping[str, str] = field(default_factory=dict)
    limits: ResourceLimits | None = None


@dataclass(frozen=True)
class DeploymentResult:
    """Synchronous outcome of a deploy or redeploy call.

    Attributes:
        success: Whether the instance reached `running`.
        message: Human-readable outcome.
        instance_id: Instance id when an instance was recorded.
        port: Assigned port when an instance was recorded.
        error_code: Stable failure code when unsuccessful.
        backend_kind: Backend selected for the instance.
    """

    success: bool
    message: str
    instance_id: str | None = None
    port: int | None = None
    error_code: str | None = None
    backend_kind: str | None = None


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a lifecycle operation against an existing instance.

    Attributes:
        success: Whether the operation succeeded.
        message: Human-readable outcome.
        instance_id: Target instance id.
        error_code: Stable failure code when unsuccessful.
        applied_live: For resource updates, whether new caps took effect immediately.
        port: For restarts, the port assigned after redeploy.
    """

    success: bool
    message: str
    instance_id: str
    error_code: str | None = None
    applied_live: bool | None = None
    port: int | None = None
