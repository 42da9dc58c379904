#!/usr/bin/env python3
"""
Main CLI entry point using Typer.
"""

import sys

import typer

from nfs_provisioner.cli.commands import exports, provisioner

app = typer.Typer(
    name="nfs-provisioner",
    help="Kubernetes NFS dynamic provisioner",
    add_completion=False,
)

app.command()(provisioner.run)
app.command()(provisioner.teardown)
app.command()(provisioner.validate)
app.add_typer(exports.app, name="exports", help="Export table commands")


def main() -> int:
    """Main entry point."""
    try:
        app()
        return 0
    except KeyboardInterrupt:
        typer.echo("\nOperation cancelled by user", err=True)
        return 130
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
