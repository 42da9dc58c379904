"""
Provisioner lifecycle commands.
"""

import dataclasses
import logging
import sys
from typing import Optional

import typer

from nfs_provisioner.api.server import start_status_server
from nfs_provisioner.cli.lib.config import ProvisionerConfig, load_config, resolve_server_address
from nfs_provisioner.cli.lib.controller import ProvisionController
from nfs_provisioner.cli.lib.exceptions import (ClusterConfigError, CommandFailed, DaemonStartError,
                                                ShutdownRequested)
from nfs_provisioner.cli.lib.kube import ClusterClient
from nfs_provisioner.cli.lib.server import ExportServer
from nfs_provisioner.cli.lib.shutdown import EXIT_FATAL, ShutdownCoordinator
from nfs_provisioner.cli.lib.static import provision_static
from nfs_provisioner.cli.lib.validators import validate_provisioner

LOG = logging.getLogger(__name__)

DEFAULT_PROVISIONER = "matthew/nfs"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(stream=sys.stderr, level=level.upper(), format=LOG_FORMAT)


def run(
    provisioner: str = typer.Option(
        DEFAULT_PROVISIONER,
        "--provisioner",
        help="Name of the provisioner. Only claims whose StorageClass names this provisioner are served.",
    ),
    out_of_cluster: bool = typer.Option(
        False, "--out-of-cluster", help="Run outside the cluster; requires --kubeconfig."
    ),
    kubeconfig: str = typer.Option("./config", "--kubeconfig", help="Path to the kubeconfig file (out of cluster)"),
    exports_manifest: Optional[str] = typer.Option(
        None, "--exports-manifest", help="Static exports manifest (default: from config)"
    ),
    resync_period: Optional[int] = typer.Option(
        None, "--resync-period", min=1, help="Seconds between full reconciliation passes (default: 15)"
    ),
    status_port: int = typer.Option(0, "--status-port", min=0, help="Serve the status API on this port (0: off)"),
    log_level: str = typer.Option("info", "--log-level", help="Log level (default: info)"),
):
    """
    Start the NFS server and provision volumes until terminated.

    Always exits with status 1: the server only stops on a signal or a fatal error.
    """
    configure_logging(log_level)
    cfg = load_config()
    if resync_period:
        cfg = dataclasses.replace(cfg, resync_period=resync_period)

    errors = validate_provisioner(provisioner)
    if errors:
        LOG.error("Invalid provisioner specified: %s", "; ".join(str(e) for e in errors))
    LOG.info("Provisioner %s specified", provisioner)

    server = ExportServer(cfg)
    coordinator = ShutdownCoordinator(server)
    coordinator.install()
    try:
        _serve(
            cfg,
            server,
            coordinator,
            provisioner=provisioner,
            out_of_cluster=out_of_cluster,
            kubeconfig=kubeconfig,
            manifest=exports_manifest or cfg.static_manifest,
            status_port=status_port,
        )
    except ShutdownRequested as e:
        LOG.info("Shutting down on signal %d", e.signum)
    except Exception as e:
        LOG.exception("Fatal error: %s", e)
    finally:
        coordinator.shutdown()
        coordinator.restore()
    raise typer.Exit(EXIT_FATAL)


def _serve(
    cfg: ProvisionerConfig,
    server: ExportServer,
    coordinator: ShutdownCoordinator,
    provisioner: str,
    out_of_cluster: bool,
    kubeconfig: str,
    manifest: str,
    status_port: int,
) -> None:
    try:
        server.start(checkpoint=coordinator.check)
    except (DaemonStartError, CommandFailed) as e:
        coordinator.fatal(f"Starting NFS failed: {e}")

    if status_port:
        start_status_server(server, cfg.status_host, status_port)
        LOG.info("Status API listening on %s:%d", cfg.status_host, status_port)

    coordinator.check()
    try:
        if out_of_cluster:
            cluster = ClusterClient.from_kubeconfig(kubeconfig, retries=cfg.api_retries)
        else:
            cluster = ClusterClient.from_in_cluster(retries=cfg.api_retries)
    except ClusterConfigError as e:
        coordinator.fatal(str(e))

    coordinator.check()
    server_address = resolve_server_address(cfg)
    result = provision_static(server, manifest, cluster, server_address, provisioner)
    if result.errors:
        LOG.error("Error while provisioning static exports: %d entries failed", len(result.errors))
    coordinator.check()

    controller = ProvisionController(cluster, server, provisioner, cfg, server_address=server_address)
    controller.run(coordinator.cancel_event)
    coordinator.check()


def teardown(
    log_level: str = typer.Option("info", "--log-level", help="Log level (default: info)"),
):
    """
    Stop the NFS server and flush all exports.

    Safe to run repeatedly, e.g. from a preStop hook.
    """
    configure_logging(log_level)
    try:
        server = ExportServer(load_config())
        failed = server.stop()
    except Exception as e:
        typer.echo(f"Error stopping NFS: {e}", err=True)
        raise typer.Exit(1)

    if failed:
        typer.echo(f"Teardown finished with failed steps: {', '.join(failed)}", err=True)
        raise typer.Exit(1)
    typer.echo("NFS server stopped")


def validate(
    provisioner: str = typer.Argument(..., help="Provisioner name to check"),
):
    """
    Check that a provisioner name is a valid qualified name.
    """
    errors = validate_provisioner(provisioner)
    if errors:
        for error in errors:
            typer.echo(f"Invalid: {error}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Provisioner {provisioner} is valid")
