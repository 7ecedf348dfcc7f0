"""
Audit Workflow Platform
Shared SQLAlchemy instance.

Every model module imports ``db`` from here so there is exactly one
metadata registry for Flask-Migrate to inspect.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
