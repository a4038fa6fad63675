"""Service Lifecycle Application Package.

To use the Flask app:
    from app.flask_app import create_app

To use the lifecycle services without Flask:
    from app.config import load_settings
    from app.core.services import build_services
"""
# Note: We don't import flask_app by default to avoid building the app
# (and opening the database) for CLI scripts that only use app.core
