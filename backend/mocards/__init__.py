# backend/mocards/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Must land before db.init_app: the engine is built from the URI there
    if config_overrides:
        app.config.update(config_overrides)

    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger(__name__).setLevel(level)
    app.logger.setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.batches import batches_bp
    from .routes.clinics import clinics_bp
    from .routes.cards import cards_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(clinics_bp)
    app.register_blueprint(cards_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
