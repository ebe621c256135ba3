"""linkconsole CLI: serve the API and inspect connections.

Usage:
    linkconsole serve                 Start the API server
    linkconsole list --owner alice    List stored connections
    linkconsole check                 Run one forced status check
    linkconsole config show           Show the resolved configuration
"""

import asyncio
import logging
import os
from typing import Optional

import typer
from rich.console import Console

from linkconsole.cli.config import CONFIG_PATH_ENV, ConsoleConfig, load_config
from linkconsole.cli.output import format_connection_table, format_report

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="linkconsole",
    help="WhatsApp link console: API server and admin CLI",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to linkconsole.yaml config file"
    ),
    log_level: str = typer.Option("warning", "--log-level", help="Root log level"),
):
    """WhatsApp link console."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _load() -> ConsoleConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the API server (uvicorn)."""
    import uvicorn

    cfg = _load()
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # Propagate the config path so the app lifespan loads the same file.
    if _config_path:
        os.environ[CONFIG_PATH_ENV] = str(_config_path)

    console.print(f"[bold]Starting link console on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "linkconsole.api.main:app",
        host=final_host,
        port=final_port,
        log_level=cfg.server.log_level,
    )


# --- Connections ---


@app.command("list")
def list_connections(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Filter by owner id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List stored connections, newest first."""
    from linkconsole.db.connection import SessionLocal, init_db
    from linkconsole.services.connection_store import ConnectionStore
    from linkconsole.services.errors import StoreError

    init_db()
    store = ConnectionStore(SessionLocal)
    try:
        records = store.list_connections(owner_id=owner)
    except StoreError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(format_connection_table(records, as_json=json_output))

    if owner is None and records and not json_output:
        for owner_id, count in sorted(store.count_by_owner().items()):
            console.print(f"  {owner_id}: {count}")


async def _run_check(cfg: ConsoleConfig, owner: str | None):
    from linkconsole.db.connection import SessionLocal, init_db
    from linkconsole.services.runtime import ConsoleRuntime

    init_db()
    runtime = ConsoleRuntime(cfg, SessionLocal, auto_start_scan=False)
    try:
        runtime.engine.reload(owner_id=owner)
        report = await runtime.scheduler.check_now()
        records = runtime.store.list_connections(owner_id=owner)
    finally:
        await runtime.shutdown()
    return report, records


@app.command()
def check(
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Only this owner's connections"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Probe every stored connection once and write back any drift."""
    cfg = _load()
    cfg.scheduler.enabled = True
    report, records = asyncio.run(_run_check(cfg, owner))
    console.print(format_report(report, as_json=json_output))
    if not json_output:
        console.print(format_connection_table(records))


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (API key masked)."""
    cfg = _load()

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")
    console.print(f"  log_level: {cfg.server.log_level}")

    console.print("\n[bold]Link service:[/bold]")
    console.print(f"  base_url: {cfg.link_service.base_url}")
    key = cfg.link_service.api_key
    console.print(f"  api_key: {'***' + key[-4:] if key and len(key) > 4 else ('***' if key else '—')}")
    console.print(f"  timeout: {cfg.link_service.timeout_seconds}s")
    for operation, path in cfg.link_service.paths.model_dump().items():
        console.print(f"  {operation}: {path}")

    console.print("\n[bold]Scan:[/bold]")
    console.print(f"  qr_ttl: {cfg.scan.qr_ttl_seconds}s")
    console.print(f"  poll_interval: {cfg.scan.poll_interval_seconds}s")

    console.print("\n[bold]Scheduler:[/bold]")
    console.print(f"  enabled: {cfg.scheduler.enabled}")
    console.print(f"  interval: {cfg.scheduler.interval_seconds}s")
    console.print(f"  batch_size: {cfg.scheduler.batch_size}")
    console.print(f"  probe_timeout: {cfg.scheduler.probe_timeout_seconds}s")


if __name__ == "__main__":
    app()
