"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi list-circuit-backups
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
