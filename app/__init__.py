"""Application factory and extension initialization for ExpenseFlow."""
from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from flask_login import LoginManager
from flask_mail import Mail
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

from config import config_by_name

# Global extension instances -------------------------------------------------

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
mail = Mail()


def create_app(config_name: Optional[str] = None, overrides: Optional[dict] = None) -> Flask:
    """Flask application factory.

    ``overrides`` is applied on top of the named configuration.
    """
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    config_name = config_name or os.getenv("FLASK_CONFIG", "development")
    config_class = config_by_name.get(config_name.lower())
    if config_class is None:
        raise ValueError(f"Unknown Flask configuration '{config_name}'")

    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # Ensure instance folder exists for SQLite DBs
    os.makedirs(app.instance_path, exist_ok=True)

    log_level = app.config.get("LOG_LEVEL", "INFO")
    app.logger.setLevel(log_level)
    logging.getLogger("app").setLevel(log_level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    mail.init_app(app)

    # Initialize email service and terminal hooks
    from app.services.email_service import init_email_service
    from app.services.hooks import register_default_listeners

    init_email_service(mail)
    register_default_listeners()

    # Register blueprints
    from app.auth import auth_bp
    from app.admin import admin_bp
    from app.employee import employee_bp
    from app.manager import manager_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(employee_bp)
    app.register_blueprint(manager_bp)

    from app.errors import register_error_handlers
    from app.cli import register_cli

    register_error_handlers(app)
    register_cli(app)

    # User loader for Flask-Login
    from app.models import User

    @login_manager.user_loader
    def load_user(user_id: str) -> Optional[User]:
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        from app.utils.helpers import json_response

        return json_response({"error": "Authentication required."}, status=401)

    @app.shell_context_processor
    def shell_context():
        return {"db": db, "User": User}

    return app
