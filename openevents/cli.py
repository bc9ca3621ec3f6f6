"""Typer CLI for OpenEvents."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import get_event, get_venue
from .database import get_session
from .duplicates import DuplicateCycleError, squash_duplicates
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="OpenEvents command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _readonly_exit(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _readonly_exit(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI app under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "openevents.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting {settings.site_title} on {host}:{port}")
    server.run()


@app.command("seed-data")
def seed_data(
    venues: int = typer.Option(
        settings.seed_venues, "--venues", min=0, help="Number of venues to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    duplicate_percent: int = typer.Option(
        settings.seed_duplicate_percent,
        "--duplicate-percent",
        min=0,
        max=100,
        help="Percentage of events created as duplicates of earlier ones (0-100)",
    ),
):
    """Populate the database with fake venues and events for testing."""
    stats = seed_fake_data(
        venue_count=venues,
        event_count=events,
        duplicate_percentage=duplicate_percent,
    )
    typer.echo(
        f"Seed complete: {stats['venues']} venues, {stats['events']} events "
        f"({stats['duplicates']} duplicates) created."
    )


@app.command("squash")
def squash(
    master_id: int = typer.Argument(..., help="Id of the record to keep"),
    duplicate_ids: list[int] = typer.Argument(..., help="Ids of the duplicates"),
    venues: bool = typer.Option(
        False, "--venues", help="Squash venues instead of events"
    ),
) -> None:
    """Mark records as duplicates of a master record."""
    init_db()
    lookup = get_venue if venues else get_event
    kind = "venue" if venues else "event"
    with get_session() as session:
        master = lookup(session, master_id)
        if master is None:
            typer.secho(f"No {kind} with id {master_id}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        duplicates = []
        for duplicate_id in duplicate_ids:
            record = lookup(session, duplicate_id)
            if record is None:
                typer.secho(
                    f"No {kind} with id {duplicate_id}", err=True, fg=typer.colors.RED
                )
                raise typer.Exit(code=1)
            duplicates.append(record)
        try:
            squashed = squash_duplicates(session, master, duplicates)
        except (ValueError, DuplicateCycleError) as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        target = squashed[0].duplicate_of_id if squashed else master_id
        typer.echo(
            f"Squashed {len(squashed)} {kind}(s) into {kind} {target}."
        )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    site_title: str | None = typer.Option(None, "--site-title", help="Site name"),
    timezone: str | None = typer.Option(
        None, "--timezone", help="IANA timezone event times are entered in"
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Listing pagination size"
    ),
    default_range_months: int | None = typer.Option(
        None,
        "--default-range-months",
        min=1,
        help="Months covered by a date range with no end date",
    ),
    max_description_links: int | None = typer.Option(
        None,
        "--max-description-links",
        min=0,
        help="Links allowed in an event description before it counts as spam",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to openevents.toml (default: ./openevents.toml)"
    ),
    seed_venues: int | None = typer.Option(
        None, "--seed-venues", min=0, help="Default seed-data venues"
    ),
    seed_events: int | None = typer.Option(
        None, "--seed-events", min=0, help="Default seed-data events"
    ),
    seed_duplicate_percent: int | None = typer.Option(
        None,
        "--seed-duplicate-percent",
        min=0,
        max=100,
        help="Default percent of duplicate events for seed-data",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "site_title": site_title,
        "timezone": timezone,
        "events_per_page": events_per_page,
        "default_range_months": default_range_months,
        "max_description_links": max_description_links,
        "app_host": host,
        "app_port": port,
        "seed_venues": seed_venues,
        "seed_events": seed_events,
        "seed_duplicate_percent": seed_duplicate_percent,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    env.setdefault("UV_CACHE_DIR", ".uv-cache")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
