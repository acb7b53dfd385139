"""
Key-value entry database model.

Backs the database flavour of the key-value store: one row per key, value
kept as JSON.
"""

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class KeyValueEntry(Base):
    """
    Key-value entry.

    Holds the persisted active route and per-guardian notification lists.
    """
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<KeyValueEntry(key='{self.key}')>"
