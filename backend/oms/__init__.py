# backend/oms/__init__.py
from flask import Flask

from .config import Config, REVERSAL_POLICIES
from .extensions import db, migrate
from .time_utils import BusinessClock


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    if app.config["REVERSAL_POLICY"] not in REVERSAL_POLICIES:
        raise ValueError(
            f"REVERSAL_POLICY must be one of {', '.join(REVERSAL_POLICIES)}, got {app.config['REVERSAL_POLICY']!r}"
        )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # "today" for every same-day / future / past decision; tests swap in a FixedClock
    app.extensions["business_clock"] = BusinessClock(app.config["BUSINESS_UTC_OFFSET_HOURS"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config["SCHEDULER_ENABLED"]:
        from .scheduler import init_scheduler
        init_scheduler(app)

    return app
