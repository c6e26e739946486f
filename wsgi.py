"""WSGI entry point: ``flask --app wsgi run`` or ``gunicorn wsgi:app``."""
import os

from app import create_app

app = create_app(os.environ.get("FLASK_CONFIG", "development"))


if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False))
