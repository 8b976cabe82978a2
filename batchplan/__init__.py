from __future__ import annotations

from datetime import datetime
from typing import Optional

import click
from flask import Flask
from flask.cli import with_appcontext

from .config import Config, _normalise_prefix
from .extensions import db, migrate


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not an ISO datetime", param_hint="--now") from None


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_class)
    app.config["URL_PREFIX"] = _normalise_prefix(app.config.get("URL_PREFIX", ""))

    db.init_app(app)
    migrate.init_app(app, db)

    from . import models  # noqa: F401  # Ensure models registered for migrations
    from .provisioning import EXTENSION_KEY, build_provisioner
    from .roster import DatabaseRosterProvider
    from .services.reminders import DISPATCHER_KEY, LoggingDispatcher

    app.extensions["batchplan.roster"] = DatabaseRosterProvider()
    app.extensions[EXTENSION_KEY] = build_provisioner(app)
    app.extensions[DISPATCHER_KEY] = LoggingDispatcher()

    with app.app_context():
        db.create_all()

    from .api import init_api

    init_api(app)

    @app.cli.command("seed")
    @with_appcontext
    def seed() -> None:
        """Seed a development batch with teachers and students."""
        from .seed import seed_data

        batch = seed_data()
        if batch is None:
            click.echo("Database already contains batches; nothing seeded.")
        else:
            click.echo(f"Seeded batch {batch.id} ({batch.name}).")

    sessions_cli = click.Group("sessions", help="Scheduled session sweeps.")

    @sessions_cli.command("auto-start")
    @click.option("--now", default=None, help="ISO datetime in the schedule timezone.")
    @with_appcontext
    def auto_start(now: Optional[str]) -> None:
        """Start sessions whose preparation window has opened."""
        from .services.sessions import auto_start_due_sessions

        result = auto_start_due_sessions(_parse_now(now))
        click.echo(
            f"{result.succeeded_count} started, {result.skipped_count} skipped, "
            f"{result.failed_count} failed."
        )

    @sessions_cli.command("send-reminders")
    @click.option("--now", default=None, help="ISO datetime in the schedule timezone.")
    @with_appcontext
    def send_reminders(now: Optional[str]) -> None:
        """Dispatch reminders that are due now."""
        from .services.reminders import dispatch_session_reminders

        result = dispatch_session_reminders(_parse_now(now))
        click.echo(
            f"{result.succeeded_count} reminder(s) sent, {result.skipped_count} already sent, "
            f"{result.failed_count} failed."
        )

    app.cli.add_command(sessions_cli)

    return app
