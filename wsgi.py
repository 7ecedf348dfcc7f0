"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-agenda-templates 1
    gunicorn wsgi:app
"""

from auditflow import create_app

app = create_app()
