"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi fpo-setup-retry-sweep
    gunicorn wsgi:app
"""

from fpo_service import create_app

app = create_app()
