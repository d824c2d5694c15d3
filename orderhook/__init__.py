import os
import logging

import click
from flask import Flask, jsonify

from orderhook.config import config_by_name
from orderhook.extensions import db, migrate


def create_app(config_name=None, test_config=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if test_config:
        app.config.update(test_config)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from orderhook import models  # noqa: F401

    # --- Register blueprints ---
    from orderhook.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Health check ---
    @app.route("/")
    def health_check():
        return jsonify({"status": "ok"})

    # --- Error handlers (JSON; callers are payment providers, not browsers) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.group("webhooks")
    def webhooks_cli():
        """Inspect and repair the webhook event ledger."""

    @webhooks_cli.command("stale")
    @click.option(
        "--minutes",
        type=int,
        default=None,
        help="Age threshold (defaults to STALE_EVENT_MINUTES).",
    )
    def stale(minutes):
        """List unprocessed webhook events older than the threshold.

        These are deliveries whose processing failed. The provider's
        redelivery can't re-claim them, so each needs a look (and usually
        `flask webhooks replay EVENT_ID`).

        Usage:
            flask webhooks stale
            flask webhooks stale --minutes 15
        """
        from orderhook.services.ledger_service import find_stale_events

        logger = logging.getLogger("orderhook.cli")
        if minutes is None:
            minutes = app.config["STALE_EVENT_MINUTES"]

        events = find_stale_events(minutes)
        if not events:
            click.echo(f"No unprocessed events older than {minutes} minutes.")
            return

        click.echo(f"{len(events)} unprocessed event(s) older than {minutes} minutes:")
        for event in events:
            logger.warning(
                f"Stale webhook event {event.provider}:{event.event_id} "
                f"({event.event_type}) error={event.error_message!r}"
            )
            click.echo(
                f"  {event.created_at}  {event.provider:<6}  {event.event_id}  "
                f"{event.event_type}  {event.error_message or '-'}"
            )

    @webhooks_cli.command("replay")
    @click.argument("event_id")
    def replay(event_id):
        """Re-process a claimed but unprocessed event from its stored payload.

        Usage:
            flask webhooks replay evt_1Abc...
        """
        from orderhook.exceptions import WebhookError
        from orderhook.services.webhook_service import replay_event

        try:
            outcome = replay_event(event_id)
        except ValueError as e:
            raise click.ClickException(str(e))
        except WebhookError as e:
            raise click.ClickException(f"Replay failed: {e}")

        click.echo(f"{event_id}: {outcome}")
