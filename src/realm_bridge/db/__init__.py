"""
realm_bridge.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and the SQL-backed thread mirror.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Only the thread mirror is persisted. Caches and the operation ledger stay in memory.
