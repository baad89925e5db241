"""Subscription store adapter: partial upserts keyed by email."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import asyncpg

from subsync.db.models import WRITABLE_COLUMNS, Table
from subsync.payments.errors import StoreError
from subsync.payments.reconciler import SubscriptionUpdate

logger = logging.getLogger(__name__)


class SubscriptionStore(ABC):
    """Durable subscription records, one per email."""

    @abstractmethod
    async def upsert(self, email: str, fields: dict[str, Any]) -> None:
        """
        Merge ``fields`` into the record for ``email``, creating it if absent.

        Columns not named in ``fields`` keep their stored value and
        ``updated_at`` is stamped on every call. Calling twice with the same
        arguments leaves the same record.

        Raises:
            StoreError: The write failed; nothing was changed
            ValueError: ``fields`` names a column that cannot be written
        """
        pass


class PostgresSubscriptionStore(SubscriptionStore):
    """SubscriptionStore backed by the ``subscriptions`` table.

    Each upsert is a single ``INSERT ... ON CONFLICT`` statement, so Postgres
    serializes concurrent writers per email and no partial field set is ever
    interleaved with another.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def upsert(self, email: str, fields: dict[str, Any]) -> None:
        query, args = build_upsert(email, fields)
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            raise StoreError(f"Upsert failed for {email}: {e}") from e


def build_upsert(email: str, fields: dict[str, Any]) -> tuple[str, list[Any]]:
    """
    Build the upsert statement for a partial field set.

    Only the given columns appear in the ``DO UPDATE SET`` list, which is what
    keeps unrelated columns intact.

    Returns:
        (query, args) ready for ``conn.execute(query, *args)``

    Raises:
        ValueError: Unknown column name
    """
    unknown = set(fields) - set(WRITABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Cannot write column(s): {', '.join(sorted(unknown))}")

    # Fixed column order keeps the statement text stable for asyncpg's cache
    columns = [c for c in WRITABLE_COLUMNS if c in fields]
    placeholders = [f"${i}" for i in range(2, len(columns) + 2)]
    updates = [f"{c} = EXCLUDED.{c}" for c in columns] + ["updated_at = now()"]

    query = f"""
        INSERT INTO {Table.SUBSCRIPTIONS}
            (email, {', '.join(columns + ['updated_at'])})
        VALUES ($1, {', '.join(placeholders + ['now()'])})
        ON CONFLICT (email) DO UPDATE SET
            {', '.join(updates)}
        """
    return query, [email] + [fields[c] for c in columns]


async def sync_subscription(store: SubscriptionStore, update: SubscriptionUpdate) -> None:
    """
    Persist a reconciled update.

    Args:
        store: Subscription store
        update: Email and partial fields from the reconciler

    Raises:
        StoreError: On write failure (not retried here; Stripe re-delivers)
    """
    await store.upsert(update.email, update.fields)

    summary = ", ".join(f"{k}={v}" for k, v in update.fields.items())
    logger.info(f"Synced subscription for {update.email}: {summary}")
