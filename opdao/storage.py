"""
SQLite State Store for the Operator DAO

Persists the exported DAO state (single row) and a receipt for every call
made through the CLI, so that successive invocations continue from the
same ledger.
"""
import json
import os
from typing import Any, Dict, List, Optional

import aiosqlite

from .logger import get_logger

logger = get_logger(__name__)


class StateStoreSQLite:
    """Single-file store: one ``dao_state`` row plus ``tx_receipts``."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    @staticmethod
    async def create(db_path: str) -> "StateStoreSQLite":
        """Create and initialize the store"""
        self = StateStoreSQLite(db_path)

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        self.connection.row_factory = aiosqlite.Row

        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.execute("PRAGMA synchronous=NORMAL")

        await self._init_schema()

        logger.debug(f"State store opened: {db_path}")
        return self

    async def _init_schema(self):
        schema = """
        CREATE TABLE IF NOT EXISTS dao_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            state_json TEXT NOT NULL,
            state_root TEXT NOT NULL,
            block_height INTEGER NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS tx_receipts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            block_height INTEGER NOT NULL,
            method TEXT NOT NULL,
            sender TEXT NOT NULL,
            args_json TEXT NOT NULL,
            success BOOLEAN NOT NULL,
            result_json TEXT,
            error_code INTEGER,
            error TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_receipts_sender ON tx_receipts(sender);
        CREATE INDEX IF NOT EXISTS idx_receipts_method ON tx_receipts(method);
        """

        await self.connection.executescript(schema)
        await self.connection.commit()

    async def close(self):
        """Close database connection"""
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.debug(f"State store closed: {self.db_path}")

    # ── State ─────────────────────────────────────────────────────────

    async def save_state(self, state: Dict[str, Any]) -> None:
        """Replace the stored snapshot with *state* (from ``export_state``)."""
        await self.connection.execute("""
            INSERT INTO dao_state (id, state_json, state_root, block_height, updated_at)
            VALUES (1, ?, ?, ?, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                state_json = excluded.state_json,
                state_root = excluded.state_root,
                block_height = excluded.block_height,
                updated_at = excluded.updated_at
        """, (
            json.dumps(state, sort_keys=True),
            state.get("stateRoot", ""),
            state.get("host", {}).get("blockHeight", 0),
        ))
        await self.connection.commit()

    async def load_state(self) -> Optional[Dict[str, Any]]:
        cursor = await self.connection.execute(
            "SELECT state_json FROM dao_state WHERE id = 1"
        )
        row = await cursor.fetchone()
        return json.loads(row["state_json"]) if row else None

    async def get_state_root(self) -> Optional[str]:
        cursor = await self.connection.execute(
            "SELECT state_root FROM dao_state WHERE id = 1"
        )
        row = await cursor.fetchone()
        return row["state_root"] if row else None

    # ── Receipts ──────────────────────────────────────────────────────

    async def add_receipt(
        self,
        block_height: int,
        method: str,
        sender: str,
        args: List[Any],
        success: bool,
        result: Any = None,
        error_code: Optional[int] = None,
        error: str = "",
    ) -> int:
        cursor = await self.connection.execute("""
            INSERT INTO tx_receipts
                (block_height, method, sender, args_json, success, result_json, error_code, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            block_height,
            method,
            sender,
            json.dumps(args, default=str),
            success,
            json.dumps(result, default=str),
            error_code,
            error,
        ))
        await self.connection.commit()
        return cursor.lastrowid

    async def get_receipts(self, limit: int = 20, sender: str = None) -> List[Dict[str, Any]]:
        """Most recent receipts first."""
        if sender:
            cursor = await self.connection.execute(
                "SELECT * FROM tx_receipts WHERE sender = ? ORDER BY id DESC LIMIT ?",
                (sender, limit),
            )
        else:
            cursor = await self.connection.execute(
                "SELECT * FROM tx_receipts ORDER BY id DESC LIMIT ?", (limit,)
            )
        rows = await cursor.fetchall()
        receipts = []
        for row in rows:
            receipt = dict(row)
            receipt["args"] = json.loads(receipt.pop("args_json"))
            receipt["result"] = json.loads(receipt.pop("result_json") or "null")
            receipt["success"] = bool(receipt["success"])
            receipts.append(receipt)
        return receipts
