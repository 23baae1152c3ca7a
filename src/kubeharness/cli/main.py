"""Main CLI entry point for kubeharness."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
import structlog
from click.core import ParameterSource
from pydantic import BaseModel, ValidationError
from rich.console import Console
from rich.markup import escape

from kubeharness import __version__
from kubeharness.core.exceptions import ConfigurationError, HarnessError
from kubeharness.utils.logging import get_logger, log_error, setup_logging

if TYPE_CHECKING:
    from kubeharness.core.config import HarnessConfig
    from kubeharness.core.models import HarnessOptions
    from kubeharness.interfaces.deployer import Deployer

console = Console()
logger = get_logger(__name__)

# command-line flag -> KindConfig field
KIND_FLAGS = {
    "cluster_name": "cluster_name",
    "loglevel": "log_level",
    "image_name": "image_name",
    "build_type": "build_type",
    "config": "config_path",
    "kubeconfig": "kubeconfig_path",
    "kube_root": "kube_root",
    "verbosity": "verbosity",
}

# command-line flag -> CapiConfig field
CAPI_FLAGS = {
    "provider": "provider",
    "kubernetes_version": "kubernetes_version",
    "control_plane_machine_count": "control_plane_count",
    "worker_machine_count": "worker_count",
    "flavor": "flavor",
    "use_existing_cluster": "use_existing_cluster",
    "up_timeout": "up_timeout",
    "install_calico": "install_calico",
    "workload_cluster_name": "workload_cluster_name",
    "kubecfg_path": "kubecfg_path",
}


class HarnessContext:
    """Shared context for CLI commands with lazy initialization."""

    def __init__(self, config_path: str | None, artifacts: str | None, run_id: str | None):
        """Initialize context.

        Args:
            config_path: Path to an optional YAML configuration file
            artifacts: Artifacts directory override
            run_id: Run identifier override
        """
        self.config_path = config_path
        self.artifacts = artifacts
        self.run_id = run_id
        self._config: HarnessConfig | None = None

    @property
    def config(self) -> HarnessConfig:
        """Get or load config lazily."""
        if self._config is None:
            from kubeharness.core.config import HarnessConfig

            if self.config_path:
                self._config = HarnessConfig.from_file(self.config_path)
            else:
                self._config = HarnessConfig()
        return self._config

    def options(self, build: bool) -> HarnessOptions:
        """Harness options from the config file, overridden by global flags."""
        updates: dict[str, Any] = {"build": build}
        if self.artifacts:
            updates["artifacts_dir"] = Path(self.artifacts)
        if self.run_id:
            updates["run_id"] = self.run_id
        return _merge(self.config.options, updates)


def _merge(model: BaseModel, updates: dict[str, Any]) -> Any:
    """Re-validate a config model with command-line values applied."""
    try:
        return type(model).model_validate({**model.model_dump(), **updates})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _flag_overrides(ctx: click.Context, flags: dict[str, str]) -> dict[str, Any]:
    """Values of the flags actually given, keyed by config field."""
    overrides = {}
    for param, field in flags.items():
        source = ctx.get_parameter_source(param)
        if source is not None and source is not ParameterSource.DEFAULT:
            overrides[field] = ctx.params[param]
    return overrides


def kind_options(func: Callable) -> Callable:
    """Add the kind deployer flags to a command."""
    options = [
        click.option("--cluster-name", help="The kind cluster --name"),
        click.option("--loglevel", help="--loglevel for kind commands"),
        click.option("--image-name", help="The image name to use for build and up"),
        click.option("--build-type", help="--type for kind build node-image"),
        click.option("--config", help="--config for kind create cluster"),
        click.option("--kubeconfig", help="--kubeconfig flag for kind create cluster"),
        click.option("--kube-root", help="--kube-root flag for kind build node-image"),
        click.option("--verbosity", type=int, default=0, help="--verbosity flag for kind"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def lifecycle_options(func: Callable) -> Callable:
    """Add the lifecycle step flags to a command."""
    options = [
        click.option("--build", is_flag=True, help="Build a node image"),
        click.option("--up", is_flag=True, help="Bring the cluster up"),
        click.option("--dump-logs", is_flag=True, help="Export cluster logs to the artifacts dir"),
        click.option("--down", is_flag=True, help="Tear the cluster down"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run_lifecycle(
    deployer: Deployer, name: str, build: bool, up: bool, dump_logs: bool, down: bool
) -> None:
    """Run the requested lifecycle steps in order: build, up, dump logs, down."""
    if not any((build, up, dump_logs, down)):
        console.print("[yellow]No lifecycle step requested (use --build, --up, --dump-logs, --down)[/yellow]")
        return

    operation = "build"
    try:
        if build:
            console.print(f"[bold]Building node image ({name})...[/bold]")
            deployer.build()
            console.print("  [green]✓ Node image built[/green]")

        if up:
            operation = "up"
            console.print(f"[bold]Bringing cluster up ({name})...[/bold]")
            deployer.up()
            console.print("  [green]✓ Cluster up[/green]")
            operation = "is_up"
            ready = deployer.is_up()
            console.print(f"  Nodes reported: {'yes' if ready else 'no'}")
            operation = "kubeconfig"
            console.print(f"  Kubeconfig: {deployer.kubeconfig()}")

        if dump_logs:
            operation = "dump_cluster_logs"
            console.print(f"[bold]Exporting cluster logs ({name})...[/bold]")
            deployer.dump_cluster_logs()
            console.print("  [green]✓ Logs exported[/green]")

        if down:
            operation = "down"
            console.print(f"[bold]Tearing cluster down ({name})...[/bold]")
            deployer.down()
            console.print("  [green]✓ Cluster deleted[/green]")
    except HarnessError as e:
        console.print(f"[red]✗ {operation} failed: {escape(str(e))}[/red]")
        log_error(logger, e, operation=operation, deployer=name)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--harness-config",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a YAML configuration file",
)
@click.option("--artifacts", type=click.Path(file_okay=False), help="Artifacts directory")
@click.option("--run-id", help="Identifier for this run")
@click.option("--log-level", help="Log level (overrides the configuration file)")
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    help="Log format (overrides the configuration file)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    harness_config: str | None,
    artifacts: str | None,
    run_id: str | None,
    log_level: str | None,
    log_format: str | None,
) -> None:
    """kubeharness - bring Kubernetes test clusters up and down."""
    harness_ctx = HarnessContext(config_path=harness_config, artifacts=artifacts, run_id=run_id)
    try:
        logging_config = harness_ctx.config.logging
    except ConfigurationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(2)

    setup_logging(
        level=log_level or logging_config.level,
        format=log_format or logging_config.format,
        output=logging_config.output,
    )
    ctx.obj = harness_ctx


@cli.command()
@kind_options
@lifecycle_options
@click.pass_context
def kind(ctx: click.Context, build: bool, up: bool, dump_logs: bool, down: bool, **_: Any) -> None:
    """Run lifecycle steps against a kind cluster."""
    from kubeharness.deployers.kind import NAME, KindDeployer

    harness_ctx: HarnessContext = ctx.obj
    try:
        options = harness_ctx.options(build)
        config = _merge(harness_ctx.config.kind, _flag_overrides(ctx, KIND_FLAGS))
    except ConfigurationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(2)

    structlog.contextvars.bind_contextvars(run_id=options.run_id, deployer=NAME)
    _run_lifecycle(KindDeployer(config, options=options), NAME, build, up, dump_logs, down)


@cli.command()
@kind_options
@click.option("--provider", help="--infrastructure provider for clusterctl")
@click.option("--kubernetes-version", help="--kubernetes-version flag for clusterctl")
@click.option(
    "--control-plane-machine-count",
    default="1",
    help="--control-plane-machine-count flag for clusterctl",
)
@click.option("--worker-machine-count", default="1", help="--worker-machine-count flag for clusterctl")
@click.option("--flavor", help="--flavor flag for clusterctl")
@click.option(
    "--use-existing-cluster",
    is_flag=True,
    help="Use the currently targeted cluster as the management cluster",
)
@click.option(
    "--up-timeout",
    default="30m",
    help="Maximum time allotted for the up step to complete",
)
@click.option(
    "--install-calico",
    is_flag=True,
    help="Install the Calico CNI once the workload cluster is ready",
)
@click.option(
    "--workload-cluster-name",
    default="capi-workload-cluster",
    help="The workload cluster name",
)
@click.option("--kubecfg-path", help="Use this kubeconfig for the workload cluster")
@lifecycle_options
@click.pass_context
def capi(ctx: click.Context, build: bool, up: bool, dump_logs: bool, down: bool, **_: Any) -> None:
    """Run lifecycle steps against a Cluster API workload cluster."""
    from kubeharness.deployers.capi import NAME, CapiDeployer

    harness_ctx: HarnessContext = ctx.obj
    try:
        options = harness_ctx.options(build)
        base = harness_ctx.config.capi_config()
        kind_config = _merge(base.kind, _flag_overrides(ctx, KIND_FLAGS))
        config = _merge(base, {**_flag_overrides(ctx, CAPI_FLAGS), "kind": kind_config})
    except ConfigurationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(2)

    structlog.contextvars.bind_contextvars(run_id=options.run_id, deployer=NAME)
    _run_lifecycle(CapiDeployer(config, options=options), NAME, build, up, dump_logs, down)


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    show_default=True,
    help="Output format for the resolved configuration",
)
@click.pass_context
def validate(ctx: click.Context, output_format: str) -> None:
    """Validate the configuration and print the resolved settings."""
    import json

    import yaml

    harness_ctx: HarnessContext = ctx.obj

    console.print("[bold]Configuration[/bold]")
    console.print(f"  Path: {harness_ctx.config_path or '(built-in defaults)'}")
    console.print("  [green]✓ Configuration valid[/green]\n")

    data = harness_ctx.config.to_dict()
    if output_format == "json":
        print(json.dumps(data, indent=2))
    else:
        print(yaml.safe_dump(data, sort_keys=False), end="")


if __name__ == "__main__":
    cli()
