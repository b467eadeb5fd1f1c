"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask drain-documents   # process every due document job once
"""

from backoffice import create_app

app = create_app()
