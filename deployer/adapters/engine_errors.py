"""Project-native typed exceptions for container engine failures."""

from __future__ import annotations


class ContainerEngineError(RuntimeError):
    """Base exception for container engine call failures.

    Attributes:
        engine_output: Optional engine-side output (build log, error body).
    """

    def __init__(self, message: str, engine_output: str | None = None):
        super().__init__(message)
        self.engine_output = engine_output


class ContainerEngineUnavailableError(ContainerEngineError, ConnectionError):
    """Engine daemon could not be reached."""


class ContainerImageBuildError(ContainerEngineError):
    """Image build failed; `engine_output` carries the build log tail."""
