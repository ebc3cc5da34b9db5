from decimal import Decimal, InvalidOperation

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from models.space import Space
from routes import booking_bp, health_bp, payments_bp, spaces_bp, webhook_bp
from services.factory import build_lifecycle
from utils.audit import log_event
from utils.auth_context import load_current_user


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(spaces_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("add-space")
    @click.argument("name")
    @click.option("--manager-id", type=int, required=True, help="Principal id of the managing user.")
    @click.option("--capacity", type=int, required=True)
    @click.option("--price-per-day", default="0", help="Daily price, e.g. 50.00")
    def add_space(name, manager_id, capacity, price_per_day):
        """Register a bookable space (spaces are owned by the space catalogue)."""
        if capacity < 1:
            raise click.BadParameter("capacity must be >= 1", param_hint="--capacity")
        try:
            price = Decimal(price_per_day).quantize(Decimal("0.01"))
        except InvalidOperation:
            raise click.BadParameter("not a decimal amount", param_hint="--price-per-day")
        if price < 0:
            raise click.BadParameter("must be >= 0", param_hint="--price-per-day")

        space = Space(name=name.strip(), manager_id=manager_id, capacity=capacity, price_per_day=price)
        db.session.add(space)
        db.session.commit()
        log_event("SPACE_CREATE", user_id=None, entity="space", entity_id=space.id, metadata={"source": "cli"})
        click.echo(f"space {space.id} created: {space.name}")

    @app.cli.command("complete-bookings")
    def complete_bookings():
        """Mark confirmed bookings whose end has passed as completed."""
        done = build_lifecycle().complete_elapsed()
        for booking_id in done:
            log_event("BOOKING_COMPLETE", user_id=None, entity="booking", entity_id=booking_id, metadata={"source": "cli"})
        click.echo(f"{len(done)} booking(s) completed")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
