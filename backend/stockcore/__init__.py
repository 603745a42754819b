# backend/stockcore/__init__.py
from __future__ import annotations

import atexit
from concurrent.futures import ThreadPoolExecutor

from flask import Flask

from .config import Config
from .extensions import db, migrate


def shutdown_restore_executor(app: Flask, wait: bool = True) -> None:
    """Stop the detached restore workers; queued jobs finish first when wait=True."""
    executor = app.extensions.pop("stock_restore_executor", None)
    if executor is not None:
        executor.shutdown(wait=wait)


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    from .immutability import register_immutability_listeners

    register_immutability_listeners()

    # Executor for detached (fire-and-forget) restore jobs, owned by this app
    app.extensions["stock_restore_executor"] = ThreadPoolExecutor(
        max_workers=app.config["RESTORE_WORKERS"],
        thread_name_prefix="stock-restore",
    )
    atexit.register(shutdown_restore_executor, app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
