"""Database package: models, engine, alert store."""

from altsignal.db.database import Database
from altsignal.db.models import AlertRow, AlertRuleRow, Base
from altsignal.db.store import AlertStore

__all__ = [
    "AlertRow",
    "AlertRuleRow",
    "AlertStore",
    "Base",
    "Database",
]
