"""Typer CLI for MyEvent."""

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
from .errors import NotFound
from .log import setup_logging
from .notifications import NotificationKind
from .seed import seed_fake_data
from .services import build_services
from .storage import init_db, upgrade_database

app = typer.Typer(help="MyEvent command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()
    setup_logging(settings)


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
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the API; the reminder scheduler runs inside the app lifespan."""
    config = uvicorn.Config(
        "myevent.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting MyEvent on {host}:{port}")
    server.run()


@app.command("send-reminders")
def send_reminders() -> None:
    """Run one reminder pass now (same selection as the daily job)."""
    init_db()
    services = build_services(settings)
    try:
        result = services.scheduler.run_manual_pass()
    finally:
        services.shutdown()
    typer.echo(json.dumps(result.as_dict(), indent=2))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("remind-event")
def remind_event(event_id: str = typer.Argument(..., help="Event identifier")) -> None:
    """Send reminders to one event's participants, whatever its start time."""
    init_db()
    services = build_services(settings)
    try:
        result = services.scheduler.run_for_event(event_id)
    except NotFound as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    finally:
        services.shutdown()
    typer.echo(json.dumps(result.as_dict(), indent=2))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("schedule")
def schedule() -> None:
    """Show when the daily reminder job fires."""
    services = build_services(settings)
    try:
        typer.echo(services.scheduler.schedule_description)
    finally:
        services.shutdown()
    typer.echo(
        "Reminds events starting between "
        f"now+{settings.reminder_window_start_hours}h and "
        f"now+{settings.reminder_window_end_hours}h"
    )


@app.command("send-test-email")
def send_test_email(
    to: str = typer.Argument(..., help="Recipient address"),
    kind: NotificationKind = typer.Option(
        NotificationKind.REMINDER, "--kind", help="Template to send"
    ),
) -> None:
    """Send a sample confirmation or reminder email."""
    services = build_services(settings)
    try:
        sent = services.dispatcher.send_test(kind, to)
    finally:
        services.shutdown()
    if not sent:
        typer.secho(f"Failed to send {kind.value} test email to {to}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"Sent {kind.value} test email to {to}", fg=typer.colors.GREEN)


@app.command("check-email")
def check_email() -> None:
    """Verify the SMTP credentials against the mail server."""
    services = build_services(settings)
    try:
        connected = services.dispatcher.check_connection()
    finally:
        services.shutdown()
    if not connected:
        typer.secho("Email connection check failed", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Email connection OK", fg=typer.colors.GREEN)


@app.command("seed-data")
def seed_data(
    events: int = typer.Option(
        settings.seed_events, "--events", min=1, help="Number of events to create"
    ),
    participants: int = typer.Option(
        settings.seed_participants_per_event,
        "--participants",
        min=0,
        help="Participants to subscribe to each event",
    ),
):
    """Populate the database with fake events, some due for tomorrow's reminders."""
    stats = seed_fake_data(event_count=events, participants_per_event=participants)
    typer.echo(
        f"Seed complete: {stats['events']} events ({stats['due_tomorrow']} due for "
        f"reminders), {stats['participants']} participants created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    reminder_hour: int | None = typer.Option(
        None, "--reminder-hour", min=0, max=23, help="Hour of the daily reminder run"
    ),
    reminder_minute: int | None = typer.Option(
        None, "--reminder-minute", min=0, max=59, help="Minute of the daily reminder run"
    ),
    reminder_timezone: str | None = typer.Option(
        None, "--reminder-timezone", help="IANA timezone for the daily run"
    ),
    message_delay: float | None = typer.Option(
        None, "--message-delay", min=0.0, help="Seconds between two emails"
    ),
    event_delay: float | None = typer.Option(
        None, "--event-delay", min=0.0, help="Seconds between two events in a pass"
    ),
    smtp_host: str | None = typer.Option(None, "--smtp-host", help="SMTP server host"),
    smtp_port: int | None = typer.Option(None, "--smtp-port", help="SMTP server port"),
    smtp_use_ssl: bool | None = typer.Option(
        None, "--smtp-ssl/--smtp-starttls", help="Implicit TLS or STARTTLS"
    ),
    mail_from: str | None = typer.Option(None, "--mail-from", help="Sender address"),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle the daily reminder scheduler",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to myevent.toml (default: ./myevent.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "reminder_hour": reminder_hour,
        "reminder_minute": reminder_minute,
        "reminder_timezone": reminder_timezone,
        "message_delay_seconds": message_delay,
        "event_delay_seconds": event_delay,
        "smtp_host": smtp_host,
        "smtp_port": smtp_port,
        "smtp_use_ssl": smtp_use_ssl,
        "mail_from": mail_from,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
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
