"""Adapter layer package for container engine and host system boundaries."""

from .docker_engine import DockerEngineAdapter, adapter_parse_container_stats
from .engine_errors import ContainerEngineError, ContainerEngineUnavailableError, ContainerImageBuildError
from .host_system import LocalHostSystemAdapter
from .interfaces import (
    CommandResult,
    ContainerEnginePort,
    ContainerState,
    HostSystemPort,
    ResourceUsage,
    SpawnedProcess,
)

__all__ = [
    "CommandResult",
    "ContainerEngineError",
    "ContainerEnginePort",
    "ContainerEngineUnavailableError",
    "ContainerImageBuildError",
    "ContainerState",
    "DockerEngineAdapter",
    "HostSystemPort",
    "LocalHostSystemAdapter",
    "ResourceUsage",
    "SpawnedProcess",
    "adapter_parse_container_stats",
]
