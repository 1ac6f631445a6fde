import os
from pathlib import Path
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from .extensions import db, migrate, login_manager, mail
from .config import Config
from .models.user import User

# Blueprints
from .blueprints.errors import errors_bp
from .blueprints.auth import auth_bp
from .blueprints.shop import shop_bp
from .blueprints.payments import payments_bp
from .blueprints.admin import admin_bp
from .cli import register_cli


# Optional: Sentry
def _init_sentry(app):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.0),
            environment=os.getenv("ENV", "development"),
            release=os.getenv("GIT_COMMIT", None),
            send_default_pii=False,
        )
        app.logger.info("Sentry initialized.")
    except Exception as e:
        app.logger.warning(f"Sentry init failed: {e}")


def _init_logging(app):
    level_name = app.config.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    if app.config.get("LOG_JSON", False):
        import json_log_formatter
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    handlers = []
    if app.config.get("LOG_TO_FILE", True):
        log_dir = Path(app.config.get("LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        # Rotating file handler (5MB x 5)
        handlers.append(RotatingFileHandler(
            log_dir / app.config.get("LOG_FILENAME", "goldshop.log"),
            maxBytes=5_000_000, backupCount=5, encoding="utf-8",
        ))
    # Stream to stdout as well (useful on dev/docker)
    handlers.append(logging.StreamHandler())

    # app.logger is the "goldshop" logger, parent of every service module's logger.
    # Drop handlers from a previous create_app() in the same process (tests)
    for h in [h for h in app.logger.handlers if getattr(h, "_goldshop", False)]:
        app.logger.removeHandler(h)
        h.close()
    app.logger.setLevel(level)
    for h in handlers:
        h._goldshop = True
        h.setLevel(level)
        h.setFormatter(formatter)
        app.logger.addHandler(h)

    app.logger.info("Logging initialized.")


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)
    app.config.from_pyfile("config.py", silent=True)

    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    Path(app.instance_path).mkdir(parents=True, exist_ok=True)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    mail.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # Logging must come before blueprints so errors during register are captured
    _init_logging(app)
    _init_sentry(app)

    # Blueprints
    app.register_blueprint(errors_bp)  # JSON error handlers
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(shop_bp)
    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    register_cli(app)

    @app.route("/health")
    def health():
        return {"ok": True}

    return app
