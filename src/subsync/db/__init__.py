"""Database pool, table names, and schema migrations."""

from subsync.db.pool import close_pool, get_pool

__all__ = ["close_pool", "get_pool"]
