"""Main CLI entry point for the network operator."""

import signal
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from network_operator.exceptions import NetworkOperatorError
from network_operator.logging_config import get_logger, setup_logging

app = typer.Typer(
    name="netop",
    help="Cluster network configuration operator",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


# Global callback to set up logging
@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    setup_logging(verbose=verbose, log_file=log_path)
    ctx.obj = {"verbose": verbose, "log_file": log_path}
    logger.debug("Logging initialized")


def _print_error(label: str, error: NetworkOperatorError) -> None:
    console.print(f"[red]{label}:[/red] {error.message}")
    if error.details:
        console.print(f"\n{error.details}")


def _load_spec_file(path: Path):
    """Read a desired spec from YAML; a full Network object or a bare spec."""
    from network_operator.models.spec import DesiredSpec

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if isinstance(data, dict) and "kind" in data and "spec" in data:
        data = data["spec"]
    return DesiredSpec.from_manifest(data)


def _load_settings(settings_file: str | None):
    from network_operator.config import OperatorSettings

    if settings_file:
        return OperatorSettings.load(settings_file)
    return OperatorSettings()


def _apply_log_settings(ctx: typer.Context, settings) -> None:
    """Reconfigure logging from settings; command-line flags take precedence."""
    options = ctx.obj or {}
    log_file = options.get("log_file")
    if log_file is None and settings.log_file:
        log_file = Path(settings.log_file)
    setup_logging(
        level=settings.log_level, log_file=log_file, verbose=options.get("verbose", False)
    )


@app.command()
def version() -> None:
    """Show version information."""
    from network_operator import __version__

    typer.echo(f"network-operator version {__version__}")


@app.command()
def validate(
    spec_file: Path = typer.Argument(..., help="YAML file with the desired network spec"),
    applied: Path | None = typer.Option(
        None, "--applied", "-a", help="Previously applied spec to check the change against"
    ),
    cluster_config: Path | None = typer.Option(
        None, "--cluster-config", "-c", help="Cluster network config to merge in"
    ),
    mtu: int | None = typer.Option(None, "--mtu", help="Host MTU used for defaulting"),
) -> None:
    """
    Validate a desired network spec.

    The spec is merged and defaulted the same way a reconcile cycle does it,
    then checked statically and, when --applied is given, against the
    change-safety rules.
    """
    from network_operator.merger import merge_config, upconvert_applied
    from network_operator.models.cluster import ClusterNetworkConfig
    from network_operator.safety import find_violations
    from network_operator.validation import collect_errors

    try:
        live = _load_spec_file(spec_file)
        previous = _load_spec_file(applied) if applied else None
        if cluster_config:
            with open(cluster_config) as f:
                data = yaml.safe_load(f) or {}
            if isinstance(data, dict) and "kind" in data and "spec" in data:
                data = data["spec"]
            cluster = ClusterNetworkConfig.from_manifest(data)
        else:
            # Without a cluster config the spec's own ranges stand.
            cluster = ClusterNetworkConfig(
                cluster_network=live.cluster_network,
                service_network=live.service_network,
                network_type=live.network_type,
            )
    except (OSError, yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Error:[/red] Failed to read input: {e}")
        raise typer.Exit(code=1)

    spec = merge_config(live, cluster, previous, mtu)
    problems = [("invalid", message) for message in collect_errors(spec)]
    problems += [
        ("unsafe", message)
        for message in find_violations(upconvert_applied(previous, mtu), spec)
    ]

    if not problems:
        console.print(f"[green]✓[/green] {spec_file} is valid")
        if previous is not None:
            console.print("[green]✓[/green] Change is safe to apply")
        return

    table = Table(title="Configuration Problems")
    table.add_column("Kind", style="yellow")
    table.add_column("Problem", style="red")
    for kind, message in problems:
        table.add_row(kind, message)
    console.print(table)
    console.print(f"\n[bold]Total problems:[/bold] {len(problems)}")
    raise typer.Exit(code=1)


def _print_conditions(status) -> None:
    table = Table(title="Component Status")
    table.add_column("Component", style="cyan")
    table.add_column("Degraded", style="red")
    table.add_column("Progressing", style="yellow")
    table.add_column("Message")
    for key, condition in sorted(status.conditions().items()):
        message = condition.degraded_message or condition.progressing_message
        table.add_row(
            key,
            "Yes" if condition.degraded else "No",
            "Yes" if condition.progressing else "No",
            message,
        )
    console.print(table)


@app.command()
def reconcile(
    ctx: typer.Context,
    state_file: Path = typer.Argument(..., help="YAML state file holding the cluster objects"),
    settings_file: str | None = typer.Option(
        None, "--settings", "-s", help="Operator settings YAML file"
    ),
    manifests: str | None = typer.Option(
        None, "--manifests", "-m", help="Manifest root directory (overrides settings)"
    ),
    mtu: int | None = typer.Option(
        None, "--mtu", help="Host MTU reported when a probe is needed"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Run the cycle without writing the state file back"
    ),
) -> None:
    """
    Run one reconciliation cycle against a state file.

    The objects in the file are loaded into an in-memory cluster, one cycle
    runs against it, and the resulting objects are written back.
    """
    from network_operator.engine import Outcome, ReconcileEngine
    from network_operator.names import OPERATOR_CONFIG
    from network_operator.probe import StaticMTUProber
    from network_operator.state_file import ClusterStateFile
    from network_operator.status import StatusManager

    try:
        settings = _load_settings(settings_file)
        _apply_log_settings(ctx, settings)
        if manifests:
            settings = settings.model_copy(update={"manifest_root": manifests})

        store = ClusterStateFile(state_file)
        cluster = store.load()
        writes_before = cluster.write_count

        status = StatusManager(cluster, field_manager=settings.field_manager)
        engine = ReconcileEngine(
            cluster,
            status,
            settings=settings,
            prober=StaticMTUProber(mtu) if mtu else None,
        )
        result = engine.reconcile(OPERATOR_CONFIG)

        changes = cluster.write_count - writes_before
        if not dry_run:
            store.save(cluster)
    except NetworkOperatorError as e:
        logger.error(f"Reconcile failed: {e.message}")
        _print_error("Error", e)
        raise typer.Exit(code=1)

    _print_conditions(status)
    console.print(f"\n[bold]Outcome:[/bold] {result.outcome.value}")
    console.print(f"[bold]Writes:[/bold] {changes}")
    if result.outcome == Outcome.RETRY:
        console.print(f"[red]Error:[/red] {result.error}")
        raise typer.Exit(code=1)


@app.command()
def run(
    ctx: typer.Context,
    kubeconfig: str | None = typer.Option(
        None, "--kubeconfig", "-k", help="Path to kubeconfig (in-cluster config when omitted)"
    ),
    settings_file: str | None = typer.Option(
        None, "--settings", "-s", help="Operator settings YAML file"
    ),
    prober_image: str = typer.Option(
        "quay.io/openshift/origin-cluster-network-operator:latest",
        "--prober-image",
        help="Image used by the MTU prober job",
    ),
) -> None:
    """
    Run the operator against a live cluster.

    Watches the operator config, the cluster network config, nodes and the
    operator's config maps, reconciling until interrupted.
    """
    from network_operator.controller import Controller
    from network_operator.engine import ReconcileEngine
    from network_operator.kube import KubernetesCluster
    from network_operator.probe import JobMTUProber
    from network_operator.status import StatusManager

    try:
        settings = _load_settings(settings_file)
        _apply_log_settings(ctx, settings)
        cluster = KubernetesCluster.from_kubeconfig(kubeconfig)
    except NetworkOperatorError as e:
        _print_error("Error", e)
        raise typer.Exit(code=1)

    status = StatusManager(cluster, field_manager=settings.field_manager)
    engine = ReconcileEngine(
        cluster,
        status,
        settings=settings,
        prober=JobMTUProber(
            cluster,
            image=prober_image,
            timeout=settings.probe_timeout,
            field_manager=settings.field_manager,
        ),
    )
    controller = Controller(engine, settings)

    def _shutdown(signum, frame):
        console.print("\n[yellow]Shutting down...[/yellow]")
        controller.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    console.print("[bold]Starting network operator[/bold]")
    console.print(f"Resync period: {settings.resync_period:.0f}s")
    console.print(f"Manifest root: {settings.manifest_root}")
    controller.run(cluster)


if __name__ == "__main__":
    app()
