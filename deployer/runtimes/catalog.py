"""Static catalog of supported language runtimes."""

from __future__ import annotations

from typing import Final

from deployer.domain import RuntimeDefinition

_PHP_RUN_COMMAND: Final[str] = "php -S 0.0.0.0:{port} -t {documentRoot}"


def _php(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="php",
        version=version,
        name=f"PHP {version}",
        default_port=default_port,
        run_command=_PHP_RUN_COMMAND,
        dependencies=("php", "php-fpm"),
        container_image=f"php:{version}-apache",
    )


def _nodejs(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="nodejs",
        version=version,
        name=f"Node.js {version}",
        default_port=default_port,
        run_command="node {script}",
        dependencies=("node", "npm"),
        container_image=f"node:{version}-alpine",
    )


def _python(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="python",
        version=version,
        name=f"Python {version}",
        default_port=default_port,
        run_command="python3 {script} {port}",
        dependencies=("python3", "pip3"),
        container_image=f"python:{version}-slim",
    )


def _ruby(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="ruby",
        version=version,
        name=f"Ruby {version}",
        default_port=default_port,
        run_command="ruby {script} -p {port}",
        dependencies=("ruby", "bundler"),
        container_image=f"ruby:{version}-alpine",
    )


def _go(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="go",
        version=version,
        name=f"Go {version}",
        default_port=default_port,
        run_command="./app",
        dependencies=("go",),
        container_image=f"golang:{version}-alpine",
    )


def _java(version: str, default_port: int) -> RuntimeDefinition:
    return RuntimeDefinition(
        language="java",
        version=version,
        name=f"Java {version}",
        default_port=default_port,
        run_command="java {script}",
        dependencies=("java", "maven"),
        container_image=f"openjdk:{version}-jdk-slim",
    )


RUNTIME_CATALOG: Final[tuple[RuntimeDefinition, ...]] = (
    _php("8.2", 8080),
    _php("8.1", 8081),
    _php("8.0", 8082),
    _nodejs("20", 3000),
    _nodejs("18", 3001),
    _nodejs("16", 3002),
    _python("3.11", 8000),
    _python("3.10", 8001),
    _python("3.9", 8002),
    _ruby("3.2", 4567),
    _ruby("3.1", 4568),
    _go("1.21", 8080),
    _go("1.20", 8081),
    _java("21", 8080),
    _java("17", 8081),
    _java("11", 8082),
)

# entry-point file a single-file payload is written to
ENTRY_FILENAMES: Final[dict[str, str]] = {
    "php": "index.php",
    "nodejs": "app.js",
    "python": "app.py",
    "ruby": "app.rb",
    "go": "main.go",
    "java": "App.java",
}

# executable probed on PATH for each dependency package name
DEPENDENCY_EXECUTABLES: Final[dict[str, str]] = {
    "php": "php",
    "php-fpm": "php-fpm",
    "node": "node",
    "npm": "npm",
    "python3": "python3",
    "pip3": "pip3",
    "ruby": "ruby",
    "bundler": "bundle",
    "go": "go",
    "java": "java",
    "maven": "mvn",
}

_APT_INSTALL: Final[str] = "apt-get update && apt-get install -y {dependency}"
_GO_TARBALL_VERSION: Final[str] = "1.21.0"

# distribution package name when it differs from the dependency name
HOST_PACKAGE_NAMES: Final[dict[str, str]] = {
    "node": "nodejs",
    "pip3": "python3-pip",
    "bundler": "ruby-bundler",
    "java": "default-jdk",
}

HOST_INSTALL_COMMANDS: Final[dict[str, str]] = {
    "php": _APT_INSTALL,
    "nodejs": "curl -fsSL https://deb.nodesource.com/setup_lts.x | bash - && apt-get install -y {dependency}",
    "python": _APT_INSTALL,
    "ruby": _APT_INSTALL,
    "go": (
        f"curl -fsSLo /tmp/go.tar.gz https://go.dev/dl/go{_GO_TARBALL_VERSION}.linux-amd64.tar.gz"
        " && tar -C /usr/local -xzf /tmp/go.tar.gz"
    ),
    "java": _APT_INSTALL,
}
