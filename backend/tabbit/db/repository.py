from __future__ import annotations

import logging
from typing import Optional, Sequence

import psycopg

from tabbit.domain.currency import DEFAULT_CURRENCY
from tabbit.domain.models import Assignment, Item, Rabbit, Tab, TabSnapshot
from tabbit.sync.ledger import PendingLedger

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when the relational store is unavailable or rejects a request."""


class TabNotFoundError(RepositoryError):
    pass


_TAB_COLUMNS = "id::text, name, tax_percent, tip_percent, currency_code, owner_id, created_at, updated_at"


def _tab_from_row(row: Sequence) -> Tab:
    return Tab(
        id=row[0],
        name=row[1],
        tax_percent=float(row[2]),
        tip_percent=float(row[3]),
        currency_code=row[4],
        owner_id=row[5] or "",
        created_at=row[6],
        updated_at=row[7],
    )


class TabRepository:
    """
    PostgreSQL store for tabs and everything scoped to them.

    Tables: tabs, items (tab_id), rabbits (tab_id) and item_rabbits
    (item_id, rabbit_id) with a unique pair constraint.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def _connect(self):
        if not self.enabled:
            raise RepositoryError("DATABASE_URL not configured")
        return psycopg.connect(self.database_url)

    def create_tab(
        self,
        *,
        owner_id: str,
        name: str,
        currency_code: str = DEFAULT_CURRENCY,
        tax_percent: float = 0,
        tip_percent: float = 0,
    ) -> Tab:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO tabs (owner_id, name, currency_code, tax_percent, tip_percent)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_TAB_COLUMNS}
                """,
                (owner_id, name, currency_code, tax_percent, tip_percent),
            )
            row = cur.fetchone()
            conn.commit()
            return _tab_from_row(row)

    def list_tabs(self, *, owner_id: str) -> list[Tab]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_TAB_COLUMNS}
                FROM tabs
                WHERE owner_id = %s
                ORDER BY created_at DESC, id DESC
                """,
                (owner_id,),
            )
            return [_tab_from_row(row) for row in cur.fetchall()]

    def delete_tab(self, *, tab_id: str) -> bool:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM item_rabbits
                WHERE item_id IN (SELECT id FROM items WHERE tab_id = %s)
                """,
                (tab_id,),
            )
            cur.execute("DELETE FROM items WHERE tab_id = %s", (tab_id,))
            cur.execute("DELETE FROM rabbits WHERE tab_id = %s", (tab_id,))
            cur.execute("DELETE FROM tabs WHERE id = %s", (tab_id,))
            deleted = cur.rowcount > 0
            conn.commit()
            return deleted

    def get_tab(self, *, tab_id: str) -> Optional[Tab]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(f"SELECT {_TAB_COLUMNS} FROM tabs WHERE id = %s", (tab_id,))
            row = cur.fetchone()
            return _tab_from_row(row) if row else None

    def load_tab(self, *, tab_id: str) -> TabSnapshot:
        """Everything an editing session needs, read in one transaction."""
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(f"SELECT {_TAB_COLUMNS} FROM tabs WHERE id = %s", (tab_id,))
            row = cur.fetchone()
            if row is None:
                raise TabNotFoundError(f"tab not found: {tab_id}")
            tab = _tab_from_row(row)

            cur.execute(
                """
                SELECT id::text, description, price_cents, created_at
                FROM items
                WHERE tab_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (tab_id,),
            )
            items = tuple(
                Item(id=r[0], description=r[1], price_cents=int(r[2]), tab_id=tab_id, created_at=r[3])
                for r in cur.fetchall()
            )

            cur.execute(
                """
                SELECT id::text, name, color, profile_id::text, created_at
                FROM rabbits
                WHERE tab_id = %s
                ORDER BY created_at ASC, id ASC
                """,
                (tab_id,),
            )
            rabbits = tuple(
                Rabbit(id=r[0], name=r[1], color=r[2], tab_id=tab_id, profile_id=r[3], created_at=r[4])
                for r in cur.fetchall()
            )

            cur.execute(
                """
                SELECT ir.item_id::text, ir.rabbit_id::text
                FROM item_rabbits ir
                JOIN items i ON i.id = ir.item_id
                WHERE i.tab_id = %s
                """,
                (tab_id,),
            )
            assignments = tuple(Assignment(item_id=r[0], rabbit_id=r[1]) for r in cur.fetchall())

            return TabSnapshot(tab=tab, items=items, rabbits=rabbits, assignments=assignments)

    def apply_ledger(self, *, tab_id: str, ledger: PendingLedger) -> None:
        """
        Write a ledger in one transaction. Removals go first so a re-added
        edge or a deleted entity's edges never collide; inserts are
        idempotent so a retried ledger can be replayed safely. No conflict
        detection: last write wins.
        """
        if ledger.is_empty:
            return

        with self._connect() as conn, conn.cursor() as cur:
            if ledger.removed_assignments:
                cur.executemany(
                    "DELETE FROM item_rabbits WHERE item_id = %s AND rabbit_id = %s",
                    [(a.item_id, a.rabbit_id) for a in ledger.removed_assignments],
                )

            if ledger.deleted_item_ids:
                cur.execute(
                    "DELETE FROM item_rabbits WHERE item_id = ANY(%s::uuid[])",
                    (list(ledger.deleted_item_ids),),
                )
                cur.execute(
                    "DELETE FROM items WHERE tab_id = %s AND id = ANY(%s::uuid[])",
                    (tab_id, list(ledger.deleted_item_ids)),
                )

            if ledger.deleted_rabbit_ids:
                cur.execute(
                    "DELETE FROM item_rabbits WHERE rabbit_id = ANY(%s::uuid[])",
                    (list(ledger.deleted_rabbit_ids),),
                )
                cur.execute(
                    "DELETE FROM rabbits WHERE tab_id = %s AND id = ANY(%s::uuid[])",
                    (tab_id, list(ledger.deleted_rabbit_ids)),
                )

            if ledger.new_items:
                cur.executemany(
                    """
                    INSERT INTO items (id, tab_id, description, price_cents)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    [(i.id, tab_id, i.description, i.price_cents) for i in ledger.new_items.values()],
                )

            if ledger.new_rabbits:
                cur.executemany(
                    """
                    INSERT INTO rabbits (id, tab_id, name, color, profile_id)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    [(r.id, tab_id, r.name, r.color, r.profile_id) for r in ledger.new_rabbits.values()],
                )

            if ledger.added_assignments:
                cur.executemany(
                    """
                    INSERT INTO item_rabbits (item_id, rabbit_id)
                    VALUES (%s, %s)
                    ON CONFLICT (item_id, rabbit_id) DO NOTHING
                    """,
                    [(a.item_id, a.rabbit_id) for a in ledger.added_assignments],
                )

            if ledger.tab_updates:
                columns = sorted(ledger.tab_updates)
                assignments_sql = ", ".join(f"{col} = %s" for col in columns)
                cur.execute(
                    f"UPDATE tabs SET {assignments_sql}, updated_at = now() WHERE id = %s",
                    [ledger.tab_updates[col] for col in columns] + [tab_id],
                )

            conn.commit()
            logger.debug("Applied ledger to tab %s: %s", tab_id, ledger.summary())
