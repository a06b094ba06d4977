import aiosqlite
from typing import Optional, List
from datetime import datetime
import logging

from models import Wallet

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.now().timestamp())


class Database:
    def __init__(self, db_path: str):
        self.db_path = db_path.split("///")[-1]
        self.pool: Optional[aiosqlite.Connection] = None

    async def connect(self):
        self.pool = await aiosqlite.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=10
        )
        # Set row factory to return dictionaries
        self.pool.row_factory = aiosqlite.Row
        await self.pool.execute("PRAGMA journal_mode=WAL")
        await self.pool.execute("PRAGMA synchronous=NORMAL")
        await self._migrate()

    async def close(self):
        if self.pool:
            try:
                await self.pool.close()
            except Exception as e:
                logger.error(f"Database close error: {str(e)}")
            finally:
                self.pool = None

    async def _migrate(self):
        """Initialize database schema"""
        try:
            await self.pool.execute("BEGIN")

            await self.pool.execute('''
                CREATE TABLE IF NOT EXISTS target_wallets (
                    address TEXT PRIMARY KEY,
                    alias TEXT UNIQUE,
                    added_by TEXT,
                    created_at INTEGER DEFAULT 0,
                    last_activity_at INTEGER DEFAULT 0,
                    trade_count INTEGER DEFAULT 0
                )''')

            await self.pool.execute('''
                CREATE TABLE IF NOT EXISTS subscribers (
                    chat_id TEXT PRIMARY KEY,
                    username TEXT,
                    created_at INTEGER DEFAULT 0
                )''')

            # Add columns missing from older databases
            async with self.pool.execute("PRAGMA table_info(target_wallets)") as cursor:
                columns = [row['name'] for row in await cursor.fetchall()]
            for col, col_type in [('last_activity_at', 'INTEGER DEFAULT 0'),
                                  ('trade_count', 'INTEGER DEFAULT 0')]:
                if col not in columns:
                    await self.pool.execute(f"ALTER TABLE target_wallets ADD COLUMN {col} {col_type}")

            await self.pool.execute("COMMIT")
        except Exception:
            await self.pool.execute("ROLLBACK")
            raise

    # Watch list

    async def get_wallet(self, identifier: str) -> Optional[Wallet]:
        async with self.pool.execute(
            "SELECT * FROM target_wallets WHERE address = ? OR LOWER(alias) = LOWER(?)",
            (identifier, identifier)
        ) as cursor:
            row = await cursor.fetchone()
            return Wallet(**dict(row)) if row else None

    async def save_wallet(self, address: str, alias: Optional[str] = None, added_by: Optional[str] = None) -> None:
        try:
            await self.pool.execute(
                "INSERT INTO target_wallets (address, alias, added_by, created_at) VALUES (?, ?, ?, ?)",
                (address, alias.lower() if alias else None, added_by, _now())
            )
            await self.pool.commit()
        except aiosqlite.IntegrityError as e:
            if await self.get_wallet(address):
                raise ValueError(f"Wallet {address} is already tracked") from e
            raise ValueError(f"Alias '{alias}' already exists") from e

    async def remove_wallet(self, address: str) -> bool:
        cursor = await self.pool.execute("DELETE FROM target_wallets WHERE address = ?", (address,))
        await self.pool.commit()
        return cursor.rowcount > 0

    async def load_all_wallets(self) -> List[Wallet]:
        async with self.pool.execute("SELECT * FROM target_wallets ORDER BY created_at, address") as cursor:
            return [Wallet(**dict(row)) for row in await cursor.fetchall()]

    async def list_tracked_wallets(self) -> List[str]:
        async with self.pool.execute("SELECT address FROM target_wallets ORDER BY created_at, address") as cursor:
            return [row['address'] for row in await cursor.fetchall()]

    async def record_wallet_activity(self, address: str) -> None:
        await self.pool.execute('''
            UPDATE target_wallets
            SET
                last_activity_at = ?,
                trade_count = trade_count + 1
            WHERE address = ?
        ''', (_now(), address))
        await self.pool.commit()

    # Notification recipients

    async def add_subscriber(self, chat_id: str, username: Optional[str] = None) -> bool:
        cursor = await self.pool.execute(
            "INSERT OR IGNORE INTO subscribers (chat_id, username, created_at) VALUES (?, ?, ?)",
            (chat_id, username, _now())
        )
        await self.pool.commit()
        return cursor.rowcount > 0

    async def remove_subscriber(self, chat_id: str) -> bool:
        cursor = await self.pool.execute("DELETE FROM subscribers WHERE chat_id = ?", (chat_id,))
        await self.pool.commit()
        return cursor.rowcount > 0

    async def is_subscriber(self, chat_id: str) -> bool:
        async with self.pool.execute("SELECT 1 FROM subscribers WHERE chat_id = ?", (chat_id,)) as cursor:
            return await cursor.fetchone() is not None

    async def list_subscribers(self) -> List[str]:
        async with self.pool.execute("SELECT chat_id FROM subscribers ORDER BY created_at, chat_id") as cursor:
            return [row['chat_id'] for row in await cursor.fetchall()]
