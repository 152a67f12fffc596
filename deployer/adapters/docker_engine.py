"""Docker engine adapter built on the Docker SDK for Python."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Final, Mapping

import docker
from docker.errors import APIError, BuildError as DockerBuildError, DockerException, ImageNotFound, NotFound

from .engine_errors import ContainerEngineError, ContainerEngineUnavailableError, ContainerImageBuildError
from .interfaces import ContainerEnginePort, ContainerState, ResourceUsage

logger = logging.getLogger(__name__)


class DockerEngineAdapter(ContainerEnginePort):
    """Container engine adapter talking to the daemon configured by `DOCKER_HOST`."""

    _CPU_PERIOD_MICROSECONDS: Final[int] = 100_000
    _BUILD_LOG_TAIL_LINES: Final[int] = 20

    def __init__(self, enabled: bool = True, timeout_seconds: float = 10.0):
        """Initialize the adapter without connecting.

        Args:
            enabled: When False the engine is always reported unavailable.
            timeout_seconds: Client timeout for engine API calls.

        Raises:
            ValueError: Raised when timeout is not positive.
        """

        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._enabled = enabled
        self._timeout_seconds = timeout_seconds
        self._client: docker.DockerClient | None = None
        self._client_lock = threading.Lock()

    def adapter_engine_available(self) -> bool:
        if not self._enabled:
            return False
        try:
            self._adapter_client().ping()
            return True
        except (DockerException, ContainerEngineUnavailableError) as error:
            logger.info("Container engine unreachable: %s", error)
            self._adapter_reset_client()
            return False

    def adapter_pull_image(self, image: str) -> None:
        logger.info("Pulling image %s", image)
        try:
            self._adapter_client().images.pull(image)
        except DockerException as error:
            raise ContainerEngineError(f"image pull failed for {image}: {error}") from error

    def adapter_build_image(self, context_path: Path, tag: str) -> str:
        logger.info("Building image %s from %s", tag, context_path)
        try:
            image, _ = self._adapter_client().images.build(path=str(context_path), tag=tag, rm=True, forcerm=True)
        except DockerBuildError as error:
            raise ContainerImageBuildError(
                f"image build failed for {tag}: {error.msg}",
                engine_output=self._adapter_build_log_tail(error.build_log),
            ) from error
        except DockerException as error:
            raise ContainerImageBuildError(f"image build failed for {tag}: {error}") from error
        return str(image.id)

    def adapter_run_container(
        self,
        image_tag: str,
        name: str,
        port: int,
        environment: Mapping[str, str],
        memory_mb: int,
        cpu_cores: float,
    ) -> str:
        try:
            container = self._adapter_client().containers.run(
                image_tag,
                name=name,
                detach=True,
                ports={f"{port}/tcp": port},
                environment=dict(environment),
                mem_limit=f"{memory_mb}m",
                nano_cpus=int(cpu_cores * 1_000_000_000),
                restart_policy={"Name": "unless-stopped"},
            )
        except DockerException as error:
            raise ContainerEngineError(f"container start failed for {name}: {error}") from error
        return str(container.id)

    def adapter_container_state(self, container_id: str) -> ContainerState:
        try:
            container = self._adapter_client().containers.get(container_id)
        except DockerException as error:
            raise ContainerEngineError(f"container inspect failed for {container_id}: {error}") from error
        state = container.attrs.get("State") or {}
        health = state.get("Health") or {}
        return ContainerState(
            status=str(state.get("Status") or "unknown"),
            health=health.get("Status"),
            exit_code=state.get("ExitCode"),
        )

    def adapter_container_logs(self, container_id: str, lines: int) -> list[str]:
        try:
            raw_logs = self._adapter_client().containers.get(container_id).logs(tail=lines)
        except NotFound:
            return []
        except DockerException as error:
            raise ContainerEngineError(f"container logs failed for {container_id}: {error}") from error
        return [line for line in raw_logs.decode("utf-8", errors="replace").splitlines() if line.strip()]

    def adapter_remove_container(self, container_id: str, stop_timeout_seconds: int) -> bool:
        try:
            container = self._adapter_client().containers.get(container_id)
            container.stop(timeout=stop_timeout_seconds)
            container.remove(force=True)
        except NotFound:
            return False
        except DockerException as error:
            raise ContainerEngineError(f"container removal failed for {container_id}: {error}") from error
        return True

    def adapter_update_container(self, container_id: str, memory_mb: int, cpu_cores: float) -> None:
        try:
            self._adapter_client().containers.get(container_id).update(
                mem_limit=f"{memory_mb}m",
                memswap_limit=-1,
                cpu_period=self._CPU_PERIOD_MICROSECONDS,
                cpu_quota=int(cpu_cores * self._CPU_PERIOD_MICROSECONDS),
            )
        except DockerException as error:
            raise ContainerEngineError(f"container update failed for {container_id}: {error}") from error

    def adapter_container_stats(self, container_id: str) -> ResourceUsage:
        try:
            raw_stats = self._adapter_client().containers.get(container_id).stats(stream=False)
        except DockerException as error:
            raise ContainerEngineError(f"container stats failed for {container_id}: {error}") from error
        return adapter_parse_container_stats(raw_stats)

    def adapter_remove_image(self, tag: str) -> bool:
        try:
            self._adapter_client().images.remove(tag, force=True)
        except ImageNotFound:
            return False
        except APIError as error:
            raise ContainerEngineError(f"image removal failed for {tag}: {error}") from error
        return True

    def _adapter_client(self) -> docker.DockerClient:
        """Return the lazily created engine client.

        Returns:
            docker.DockerClient: Connected client.

        Raises:
            ContainerEngineUnavailableError: Raised when the adapter is disabled or the
                daemon socket cannot be opened.
        """

        if not self._enabled:
            raise ContainerEngineUnavailableError("container engine disabled by configuration")
        with self._client_lock:
            if self._client is None:
                try:
                    self._client = docker.from_env(timeout=int(self._timeout_seconds))
                except DockerException as error:
                    raise ContainerEngineUnavailableError(f"container engine unreachable: {error}") from error
            return self._client

    def _adapter_reset_client(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
            self._client = None

    def _adapter_build_log_tail(self, build_log) -> str:
        messages: list[str] = []
        for chunk in build_log or []:
            if isinstance(chunk, dict):
                text_value = chunk.get("stream") or chunk.get("error") or ""
                if text_value.strip():
                    messages.append(text_value.strip())
        return "\n".join(messages[-self._BUILD_LOG_TAIL_LINES :])


def adapter_parse_container_stats(raw_stats: Mapping[str, Any]) -> ResourceUsage:
    """Reduce one engine stats document to the figures `docker stats` shows.

    CPU is the usage delta against the previous sample scaled by online CPUs.
    Memory excludes reclaimable page cache (`inactive_file` on cgroup v2,
    `cache` on cgroup v1). Network and block IO are summed across interfaces
    and devices and stay None when the engine omits them.

    Args:
        raw_stats: Decoded stats document from the engine API.

    Returns:
        ResourceUsage: Parsed usage sample.
    """

    cpu_stats = raw_stats.get("cpu_stats") or {}
    precpu_stats = raw_stats.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    cpu_delta = cpu_usage.get("total_usage", 0) - (precpu_stats.get("cpu_usage") or {}).get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get("system_cpu_usage", 0)
    online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or ()) or 1
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = cpu_delta / system_delta * online_cpus * 100.0

    memory_stats = raw_stats.get("memory_stats") or {}
    memory_detail = memory_stats.get("stats") or {}
    page_cache = memory_detail.get("inactive_file", memory_detail.get("cache", 0))
    memory_limit = memory_stats.get("limit")

    network_rx = network_tx = None
    networks = raw_stats.get("networks")
    if networks:
        network_rx = sum(int(interface.get("rx_bytes", 0)) for interface in networks.values())
        network_tx = sum(int(interface.get("tx_bytes", 0)) for interface in networks.values())

    block_read = block_write = None
    block_entries = (raw_stats.get("blkio_stats") or {}).get("io_service_bytes_recursive")
    if block_entries is not None:
        block_read = sum(
            int(entry.get("value", 0)) for entry in block_entries if str(entry.get("op")).lower() == "read"
        )
        block_write = sum(
            int(entry.get("value", 0)) for entry in block_entries if str(entry.get("op")).lower() == "write"
        )

    return ResourceUsage(
        cpu_percent=round(cpu_percent, 2),
        memory_bytes=max(int(memory_stats.get("usage", 0)) - int(page_cache), 0),
        memory_limit_bytes=int(memory_limit) if memory_limit is not None else None,
        network_rx_bytes=network_rx,
        network_tx_bytes=network_tx,
        block_read_bytes=block_read,
        block_write_bytes=block_write,
    )
