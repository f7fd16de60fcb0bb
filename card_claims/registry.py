"""
Card Registry - SQLite storage for linked cards and their claim state.

Cards are kept in insertion order (rowid) so every pass walks them
in the same, reproducible order.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional
from card_claims.models import Card, UpsertOutcome, RemoveOutcome

log = logging.getLogger(__name__)


class CardRegistry:
    """
    SQLite-based registry of cards.

    Owner commands (link/unlink/list) and the claim worker share it.
    """

    def __init__(self, db_path: str = "./cards.db"):
        self.db_path = db_path

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS cards (
                card_code TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                last_claim_ts INTEGER DEFAULT 0,
                claim_retry INTEGER DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_cards_owner ON cards(owner_id);
        """)
        self.conn.commit()

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    @staticmethod
    def _require(name: str, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError(f"{name} must not be empty")
        return value

    # === OWNER OPERATIONS ===

    def upsert(self, card_code: str, owner_id: str) -> UpsertOutcome:
        """Link a card to an owner; re-linking moves ownership."""
        card_code = self._require("card_code", card_code)
        owner_id = self._require("owner_id", owner_id)

        cur = self.conn.execute(
            "UPDATE cards SET owner_id = ? WHERE card_code = ?", (owner_id, card_code)
        )
        if cur.rowcount:
            self.conn.commit()
            return UpsertOutcome.UPDATED

        self.conn.execute(
            "INSERT INTO cards (card_code, owner_id) VALUES (?, ?)", (card_code, owner_id)
        )
        self.conn.commit()
        return UpsertOutcome.CREATED

    def remove(self, card_code: str, requester_id: str) -> RemoveOutcome:
        """Unlink a card, only on behalf of its current owner."""
        card_code = self._require("card_code", card_code)
        requester_id = self._require("requester_id", requester_id)

        row = self.conn.execute(
            "SELECT owner_id FROM cards WHERE card_code = ?", (card_code,)
        ).fetchone()
        if row is None:
            return RemoveOutcome.NOT_FOUND
        if row["owner_id"] != requester_id:
            return RemoveOutcome.NOT_OWNER

        self.conn.execute(
            "DELETE FROM cards WHERE card_code = ? AND owner_id = ?", (card_code, requester_id)
        )
        self.conn.commit()
        return RemoveOutcome.OK

    def list_by_owner(self, owner_id: str) -> list[Card]:
        rows = self.conn.execute(
            "SELECT * FROM cards WHERE owner_id = ? ORDER BY rowid ASC", (owner_id,)
        ).fetchall()
        return [Card.from_row(r) for r in rows]

    def list_all(self) -> list[Card]:
        """All cards in insertion order."""
        rows = self.conn.execute("SELECT * FROM cards ORDER BY rowid ASC").fetchall()
        return [Card.from_row(r) for r in rows]

    def get(self, card_code: str) -> Optional[Card]:
        row = self.conn.execute(
            "SELECT * FROM cards WHERE card_code = ?", (card_code,)
        ).fetchone()
        return Card.from_row(row) if row else None

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM cards").fetchone()[0]

    # === WORKER OPERATIONS ===

    def record_claim_success(self, card_code: str, timestamp: int):
        """Reset the retry counter; the claim timestamp never moves backwards."""
        self.conn.execute("""
            UPDATE cards
            SET last_claim_ts = MAX(COALESCE(last_claim_ts, 0), ?), claim_retry = 0
            WHERE card_code = ?
        """, (int(timestamp), card_code))
        self.conn.commit()

    def record_claim_failure(self, card_code: str):
        self.conn.execute(
            "UPDATE cards SET claim_retry = COALESCE(claim_retry, 0) + 1 WHERE card_code = ?",
            (card_code,),
        )
        self.conn.commit()

    def delete(self, card_code: str):
        """Unconditional removal, used when the ledger reports the card gone."""
        self.conn.execute("DELETE FROM cards WHERE card_code = ?", (card_code,))
        self.conn.commit()
        log.debug(f"Deleted card {card_code}")
