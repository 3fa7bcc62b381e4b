from __future__ import annotations

from typing import Any

import click
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from .admin import admin_bp
from .auth import auth_bp
from .bootstrap import bootstrap_admin, bootstrap_defaults
from .common.errors import APIError, error_payload, register_error_handlers
from .common.storage import LocalObjectStorage, build_storage
from .config import DEV_JWT_SECRET, Config
from .extensions import cors, db, jwt, migrate
from .files import files_bp
from .payments import payments_bp
from .payments.gateway import StripeGateway
from .storage import storage_bp


def _register_jwt_handlers(jwt_manager: JWTManager) -> None:
    @jwt_manager.unauthorized_loader
    def unauthorized(reason: str):  # type: ignore[no-untyped-def]
        return (
            jsonify(error_payload("UNAUTHENTICATED", "Missing or invalid authentication token.", {"reason": reason}, 401)),
            401,
        )

    @jwt_manager.invalid_token_loader
    def invalid_token(reason: str):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("INVALID_TOKEN", "Invalid token.", {"reason": reason}, 401)), 401

    @jwt_manager.expired_token_loader
    def expired_token(jwt_header, jwt_payload):  # type: ignore[no-untyped-def]
        return jsonify(error_payload("TOKEN_EXPIRED", "Token has expired.", status_code=401)), 401


def _register_cli(app: Flask) -> None:
    @app.cli.command("bootstrap-admin")
    @click.option("--email", envvar="ADMIN_EMAIL", required=True, help="Administrator email address.")
    @click.option("--password", envvar="ADMIN_PASSWORD", prompt=True, hide_input=True, help="Administrator password.")
    @click.option("--force", is_flag=True, help="Add another admin even if one exists.")
    def bootstrap_admin_command(email: str, password: str, force: bool) -> None:
        """Create or promote the administrator account."""
        bootstrap_defaults(commit=True)
        try:
            user, created = bootstrap_admin(email, password, force=force)
        except APIError as error:
            raise click.ClickException(error.message) from error
        except RuntimeError as error:
            raise click.ClickException(str(error)) from error
        click.echo(f"{'Created' if created else 'Updated'} admin user: {user.email}")


def create_app(config_override: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    if app.config["ENV"] == "production" and app.config["JWT_SECRET_KEY"] == DEV_JWT_SECRET:
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")

    app.logger.setLevel(str(app.config["LOG_LEVEL"]).upper())

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    _register_jwt_handlers(jwt)
    cors.init_app(app, resources={r"/*": {"origins": app.config["FRONTEND_ORIGINS"]}})

    storage = build_storage(app.config)
    app.extensions["object_storage"] = storage
    app.extensions["payment_gateway"] = StripeGateway(app.config["STRIPE_SECRET_KEY"])

    app.register_blueprint(auth_bp)
    app.register_blueprint(files_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)
    if isinstance(storage, LocalObjectStorage):
        app.register_blueprint(storage_bp)

    @app.get("/health")
    def healthcheck():
        return {"status": "ok"}

    register_error_handlers(app)
    _register_cli(app)

    with app.app_context():
        try:
            bootstrap_defaults(commit=True)
        except (OperationalError, ProgrammingError, IntegrityError):
            # Tables may be missing until migrations run, or another worker
            # inserted the default folders first.
            db.session.rollback()

    return app
