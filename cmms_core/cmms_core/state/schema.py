"""Schema capability checks.

Some features (RBAC grants in particular) ship in a later migration than
the rest of the schema.  :class:`SchemaState` answers "is this relation
present?" so repositories can raise :class:`NotProvisionedError` up front
instead of failing mid-query.
"""

from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class SchemaState:
    """Process-wide record of which tables are known to exist.

    Only positive answers are cached: once a migration has created a table
    it never disappears, while a missing table is re-checked on every call
    so a freshly applied migration is picked up without a restart.
    """

    def __init__(self) -> None:
        self._present: set[str] = set()

    async def has_table(self, session: AsyncSession, table_name: str) -> bool:
        """Return ``True`` if *table_name* exists in the bound database."""
        if table_name in self._present:
            return True
        conn = await session.connection()
        exists = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))
        if exists:
            self._present.add(table_name)
        else:
            logger.warning("Table '%s' is not provisioned", table_name)
        return bool(exists)

    def reset(self) -> None:
        """Forget every cached answer."""
        self._present.clear()
