from flask import Flask, jsonify
from config import Config
from routes import health_bp, booking_bp, rooms_bp, payments_bp, webhook_bp, pay_pages_bp

from models import db
from flask_migrate import Migrate
from services.errors import BookingError
from services.gateway import StripeGateway
from utils.seed import seed_roles
from utils.auth_context import load_current_user


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(rooms_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(pay_pages_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Payment gateway (tests swap this for a fake)
    app.extensions["payment_gateway"] = StripeGateway.from_config(app.config)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("CREATE_TABLES"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        if exc.status_code >= 500:
            app.logger.error("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return resp


    register_cli(app)


    return app

#-------------------------
import threading

import click
from models.user import User, Role
from services import sweeper
from utils.seed import seed_rooms

def register_cli(app):
    @app.cli.command("grant-role")
    @click.argument("email")
    @click.argument("role", default="RECEPTIONIST")
    def grant_role(email, role):
        """Give a user a role (CUSTOMER, RECEPTIONIST, ADMIN) by email."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            print("User not found")
            return

        role = role.strip().upper()
        row = Role.query.filter_by(name=role).first()
        if not row:
            row = Role(name=role)
            db.session.add(row)
            db.session.commit()

        if row not in user.roles:
            user.roles.append(row)
            db.session.commit()

        print(f"{user.email} granted {role}")

    @app.cli.command("seed-rooms")
    def seed_rooms_cmd():
        """Add the demo room catalog (skips room numbers that exist)."""
        added = seed_rooms()
        print(f"{added} rooms added")

    @app.cli.command("sweep-bookings")
    def sweep_bookings():
        """Expire unpaid holds and complete finished stays once (for cron)."""
        result = sweeper.run_sweep()
        print(f"expired={len(result['expired'])} completed={len(result['completed'])}")

    @app.cli.command("run-sweeper")
    @click.option("--interval", type=int, default=None, help="Seconds between sweeps.")
    def run_sweeper(interval):
        """Sweep on a fixed period until interrupted."""
        interval = interval or app.config.get("SWEEP_INTERVAL_SECONDS", 60)
        stop = threading.Event()
        print(f"Sweeping every {interval}s, Ctrl+C to stop")
        try:
            while not stop.is_set():
                result = sweeper.run_sweep()
                if result["expired"] or result["completed"]:
                    print(f"expired={result['expired']} completed={result['completed']}")
                stop.wait(interval)
        except KeyboardInterrupt:
            print("Sweeper stopped")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
