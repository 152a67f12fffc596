"""Runtime registry resolving catalog entries and installing them on demand."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Final, Iterable

from deployer.adapters import ContainerEngineError, ContainerEnginePort, HostSystemPort
from deployer.domain import InstallationFailedError, RuntimeDefinition, RuntimeNotFoundError

from .catalog import DEPENDENCY_EXECUTABLES, HOST_INSTALL_COMMANDS, HOST_PACKAGE_NAMES, RUNTIME_CATALOG

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT_SECONDS: Final[float] = 600.0


class RuntimeRegistry:
    """In-process view of supported runtimes and their install state.

    Definitions are immutable; marking a runtime installed replaces the stored
    value. Installation is serialized per runtime so concurrent deploys of the
    same runtime pull or install only once.
    """

    def __init__(
        self,
        container_engine: ContainerEnginePort,
        host_system: HostSystemPort,
        definitions: Iterable[RuntimeDefinition] = RUNTIME_CATALOG,
    ):
        """Initialize registry dependencies and seed definitions.

        Args:
            container_engine: Engine adapter used for image pulls.
            host_system: Host adapter used for dependency probing and installs.
            definitions: Runtime definitions to register.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are missing or definitions collide.
        """

        if container_engine is None:
            raise ValueError("container_engine must not be None")
        if host_system is None:
            raise ValueError("host_system must not be None")

        self._container_engine = container_engine
        self._host_system = host_system
        self._definitions: dict[tuple[str, str], RuntimeDefinition] = {}
        for definition in definitions:
            key = (definition.language, definition.version)
            if key in self._definitions:
                raise ValueError(f"duplicate runtime definition {definition.runtime_id}")
            self._definitions[key] = definition
        self._definitions_lock = threading.Lock()
        self._install_locks = {key: threading.Lock() for key in self._definitions}

    def runtime_list(self) -> list[RuntimeDefinition]:
        """Return all registered runtimes in catalog order.

        Returns:
            list[RuntimeDefinition]: Current definitions, including disabled ones.
        """

        with self._definitions_lock:
            return list(self._definitions.values())

    def runtime_resolve(self, language: str, version: str) -> RuntimeDefinition:
        """Resolve one enabled runtime.

        Args:
            language: Language key; surrounding whitespace and case are ignored.
            version: Version label; surrounding whitespace is ignored.

        Returns:
            RuntimeDefinition: Current definition for the runtime.

        Raises:
            RuntimeNotFoundError: Raised when the runtime is unknown or disabled.
        """

        key = ((language or "").strip().lower(), (version or "").strip())
        with self._definitions_lock:
            definition = self._definitions.get(key)
        if definition is None or not definition.enabled:
            raise RuntimeNotFoundError(f"Runtime {key[0]}-{key[1]} not found")
        return definition

    def runtime_ensure_installed(self, definition: RuntimeDefinition) -> RuntimeDefinition:
        """Make a runtime usable, pulling its image or installing host dependencies.

        The container path is tried first when the engine answers and the
        runtime has an image. An unreachable engine or a failed pull falls back
        once to host installation; there is no retry beyond that. The returned
        definition records which path succeeded so backend selection can follow it.

        Args:
            definition: Runtime to install.

        Returns:
            RuntimeDefinition: Stored definition with `image_installed` or `host_installed` set.

        Raises:
            RuntimeNotFoundError: Raised when the runtime is not registered.
            InstallationFailedError: Raised when host installation fails or times out.
        """

        key, install_lock = self._runtime_install_lock(definition)
        with install_lock:
            current = self._definitions[key]
            if current.installed:
                return current

            if current.container_image and self._container_engine.adapter_engine_available():
                try:
                    self._container_engine.adapter_pull_image(current.container_image)
                    logger.info("Runtime %s installed from image %s", current.runtime_id, current.container_image)
                    return self._runtime_mark_installed(key, image_installed=True)
                except ContainerEngineError as error:
                    logger.warning(
                        "Image pull failed for %s, falling back to host install: %s",
                        current.runtime_id,
                        error,
                    )

            self._runtime_install_host_dependencies(current)
            logger.info("Runtime %s installed from host packages", current.runtime_id)
            return self._runtime_mark_installed(key, host_installed=True)

    def runtime_ensure_host_installed(self, definition: RuntimeDefinition) -> RuntimeDefinition:
        """Install host dependencies for a runtime that will run natively.

        Used when a runtime installed from its image has to run as a host
        process because the engine is no longer reachable.

        Args:
            definition: Runtime to install on the host.

        Returns:
            RuntimeDefinition: Stored definition with `host_installed=True`.

        Raises:
            RuntimeNotFoundError: Raised when the runtime is not registered.
            InstallationFailedError: Raised when host installation fails or times out.
        """

        key, install_lock = self._runtime_install_lock(definition)
        with install_lock:
            current = self._definitions[key]
            if current.host_installed:
                return current
            self._runtime_install_host_dependencies(current)
            logger.info("Runtime %s installed from host packages", current.runtime_id)
            return self._runtime_mark_installed(key, host_installed=True)

    def _runtime_install_lock(self, definition: RuntimeDefinition) -> tuple[tuple[str, str], threading.Lock]:
        key = (definition.language, definition.version)
        install_lock = self._install_locks.get(key)
        if install_lock is None:
            raise RuntimeNotFoundError(f"Runtime {definition.runtime_id} not found")
        return key, install_lock

    def _runtime_install_host_dependencies(self, definition: RuntimeDefinition) -> None:
        """Install every host dependency that is not already on PATH.

        Args:
            definition: Runtime whose dependencies should be installed.

        Raises:
            InstallationFailedError: Raised on non-zero exit, timeout, or missing install recipe.
        """

        command_template = HOST_INSTALL_COMMANDS.get(definition.language)
        if command_template is None:
            raise InstallationFailedError(f"no host install recipe for {definition.language}")

        for dependency in definition.dependencies:
            executable = DEPENDENCY_EXECUTABLES.get(dependency, dependency)
            if self._host_system.adapter_command_available(executable):
                logger.debug("Dependency %s already available for %s", dependency, definition.runtime_id)
                continue

            command = command_template.format(dependency=HOST_PACKAGE_NAMES.get(dependency, dependency))
            logger.info("Installing dependency %s for %s", dependency, definition.runtime_id)
            try:
                result = self._host_system.adapter_run_command(
                    ["sh", "-c", command],
                    cwd=None,
                    timeout_seconds=INSTALL_TIMEOUT_SECONDS,
                )
            except TimeoutError as error:
                raise InstallationFailedError(
                    f"Failed to install runtime {definition.runtime_id}: {dependency} install timed out"
                ) from error
            if result.returncode != 0:
                raise InstallationFailedError(
                    f"Failed to install runtime {definition.runtime_id}: "
                    f"{dependency} install exited with {result.returncode}: {result.command_output_tail()}"
                )

    def _runtime_mark_installed(self, key: tuple[str, str], **flags: bool) -> RuntimeDefinition:
        with self._definitions_lock:
            installed = replace(self._definitions[key], **flags)
            self._definitions[key] = installed
        return installed
