# backend/backoffice/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, enable_sqlite_savepoints, migrate
from .logging_config import configure_logging


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must be applied before db.init_app, the engine is built from it
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        with app.app_context():
            enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .error_handlers import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.lottery import lottery_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(lottery_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
