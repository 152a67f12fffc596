"""Main module entrypoint for the HTTP service and operator CLI.

`api` (the default) starts the FastAPI service. The other commands run one
operation against the same database and workspace root and print JSON.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Sequence

import uvicorn

from deployer.api.routers.instances import (
    api_serialize_deployment_result,
    api_serialize_instance,
    api_serialize_usage,
)
from deployer.api.routers.runtimes import api_serialize_runtime
from deployer.bootstrap import DeployerComponents, bootstrap_create_application, bootstrap_create_components
from deployer.domain import DeploymentError, DeploymentRequest, InstanceNotFoundError, OperationResult, ResourceLimits

_INSTANCE_COMMANDS = ("stop", "restart", "delete", "logs", "stats")


def main(argv: Sequence[str] | None = None) -> None:
    """Run the selected command with validated startup configuration.

    Args:
        argv: Optional argument list; defaults to `sys.argv[1:]`.

    Returns:
        None: This function does not return a runtime value.

    Raises:
        SettingsLoadError: Raised when configuration validation fails.
        SystemExit: Raised with status 1 when the selected operation fails.
    """

    argument_parser = main_build_argument_parser()
    parsed_arguments = argument_parser.parse_args(argv)

    if parsed_arguments.command in _INSTANCE_COMMANDS and not parsed_arguments.instance_id:
        argument_parser.error(f"--instance-id is required for `{parsed_arguments.command}`")
    if parsed_arguments.command == "deploy":
        missing = [
            flag
            for flag, value in (
                ("--domain-id", parsed_arguments.domain_id),
                ("--language", parsed_arguments.language),
                ("--version", parsed_arguments.runtime_version),
                ("--source", parsed_arguments.source),
            )
            if not value
        ]
        if missing:
            argument_parser.error(f"`deploy` requires {', '.join(missing)}")

    components = bootstrap_create_components()
    if parsed_arguments.command == "api":
        application = bootstrap_create_application(components)
        uvicorn.run(
            application,
            host=components.settings.application_host,
            port=components.settings.application_port,
        )
        return

    try:
        succeeded = main_run_command(components, parsed_arguments)
    finally:
        components.instance_registry.instance_shutdown()
    if not succeeded:
        raise SystemExit(1)


def main_build_argument_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""

    argument_parser = argparse.ArgumentParser(description="Runtime deployer entrypoint")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="api",
        choices=("api", "runtimes", "deploy", "instances", *_INSTANCE_COMMANDS),
        help="`api` starts the server; the other commands run one operation and print JSON",
        type=str,
    )
    argument_parser.add_argument("--instance-id", dest="instance_id", type=str, help="Target instance id")
    argument_parser.add_argument("--domain-id", dest="domain_id", type=str, help="Owning domain id")
    argument_parser.add_argument("--language", dest="language", type=str, help="Runtime language for `deploy`")
    argument_parser.add_argument("--version", dest="runtime_version", type=str, help="Runtime version for `deploy`")
    argument_parser.add_argument(
        "--source",
        dest="source",
        type=str,
        help="Entry-point file or project directory for `deploy`",
    )
    argument_parser.add_argument(
        "--env",
        dest="environment",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for `deploy`; repeatable",
    )
    argument_parser.add_argument("--memory-mb", dest="memory_mb", type=int, help="Memory cap for `deploy`")
    argument_parser.add_argument("--cpu-cores", dest="cpu_cores", type=float, help="CPU cap for `deploy`")
    argument_parser.add_argument("--disk-mb", dest="disk_mb", type=int, help="Disk quota for `deploy`")
    argument_parser.add_argument("--lines", dest="lines", type=int, default=100, help="Log lines for `logs`")
    return argument_parser


def main_run_command(components: DeployerComponents, parsed_arguments: argparse.Namespace) -> bool:
    """Run one non-server command and print its JSON result.

    Returns:
        bool: Whether the operation succeeded.
    """

    command = parsed_arguments.command
    lifecycle_manager = components.lifecycle_manager

    if command == "runtimes":
        main_print_json([api_serialize_runtime(item) for item in components.runtime_registry.runtime_list()])
        return True

    if command == "instances":
        instances = lifecycle_manager.lifecycle_list(parsed_arguments.domain_id)
        main_print_json([api_serialize_instance(instance) for instance in instances])
        return True

    if command == "deploy":
        settings = components.settings
        limits = None
        requested_caps = (parsed_arguments.memory_mb, parsed_arguments.cpu_cores, parsed_arguments.disk_mb)
        if any(value is not None for value in requested_caps):
            limits = ResourceLimits(
                memory_mb=parsed_arguments.memory_mb or settings.default_memory_limit_mb,
                cpu_cores=parsed_arguments.cpu_cores or settings.default_cpu_limit,
                disk_mb=parsed_arguments.disk_mb or settings.default_disk_limit_mb,
            )
        result = components.orchestrator.job_deploy(
            DeploymentRequest(
                domain_id=parsed_arguments.domain_id,
                language=parsed_arguments.language,
                version=parsed_arguments.runtime_version,
                source_payload=main_read_source(Path(parsed_arguments.source)),
                environment=main_parse_environment(parsed_arguments.environment),
                limits=limits,
            )
        )
        main_print_json(api_serialize_deployment_result(result))
        return result.success

    instance_id = parsed_arguments.instance_id
    if command == "logs":
        try:
            log_lines = lifecycle_manager.lifecycle_logs(instance_id, parsed_arguments.lines)
        except InstanceNotFoundError as error:
            main_print_json({"success": False, "error_code": error.error_code, "message": str(error)})
            return False
        for line in log_lines:
            print(line)
        return True

    if command == "stats":
        try:
            usage = lifecycle_manager.lifecycle_stats(instance_id)
        except DeploymentError as error:
            main_print_json({"success": False, "error_code": error.error_code, "message": str(error)})
            return False
        main_print_json({"instance_id": instance_id, **api_serialize_usage(usage)})
        return True

    operations = {
        "stop": lifecycle_manager.lifecycle_stop,
        "restart": lifecycle_manager.lifecycle_restart,
        "delete": lifecycle_manager.lifecycle_delete,
    }
    result: OperationResult = operations[command](instance_id)
    main_print_json(
        {
            "success": result.success,
            "message": result.message,
            "instance_id": result.instance_id,
            "error_code": result.error_code,
            "port": result.port,
        }
    )
    return result.success


def main_read_source(source_path: Path) -> str | dict[str, str]:
    """Read a deploy payload from a single file or a project directory.

    Args:
        source_path: Entry-point file or directory.

    Returns:
        str | dict[str, str]: File text, or mapping of relative path to text for directories.

    Raises:
        FileNotFoundError: Raised when the path does not exist.
    """

    if source_path.is_dir():
        return {
            file_path.relative_to(source_path).as_posix(): file_path.read_text(encoding="utf-8")
            for file_path in sorted(source_path.rglob("*"))
            if file_path.is_file()
        }
    return source_path.read_text(encoding="utf-8")


def main_parse_environment(pairs: Sequence[str]) -> dict[str, str]:
    """Parse repeated `KEY=VALUE` arguments.

    Raises:
        SystemExit: Raised through argparse-style exit when a pair has no `=`.
    """

    environment: dict[str, str] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key:
            print(f"invalid --env value {pair!r}; expected KEY=VALUE", file=sys.stderr)
            raise SystemExit(2)
        environment[key] = value
    return environment


def main_print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
