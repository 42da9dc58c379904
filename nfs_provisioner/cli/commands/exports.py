"""
Export table commands.
"""

from pathlib import Path

import typer

from nfs_provisioner.cli.lib.config import get_state_dir, load_config
from nfs_provisioner.cli.lib.exports import ExportTable

app = typer.Typer(help="Export table commands")


@app.command("list")
def list_exports(
    static_only: bool = typer.Option(False, "--static", help="Only show static exports"),
    dynamic_only: bool = typer.Option(False, "--dynamic", help="Only show exports created for claims"),
):
    """
    List exports recorded in the persisted export table.
    """
    try:
        cfg = load_config()
        table = ExportTable(state_file=get_state_dir(cfg) / "exports.json", config_path=Path(cfg.exports_config))
        exports = table.entries()
        if static_only:
            exports = [e for e in exports if e.is_static]
        if dynamic_only:
            exports = [e for e in exports if not e.is_static]
        if not exports:
            typer.echo("No exports found")
            return
        for exp in exports:
            typer.echo(f"{exp.path} {exp.rule.render()} fsid={exp.fsid} claim={exp.claim_uid or '-'}")

    except Exception as e:
        typer.echo(f"Error listing exports: {e}", err=True)
        raise typer.Exit(1)
