"""
Billing Back Office
SQLAlchemy models package.

Models are split per domain:
    - billing:   billing entities, lookups, time records and material items
    - documents: document jobs, generated documents, outbound email log
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in this schema stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
