"""
Persistence client for the SkyLife workflow.

One SQLite database holds every application table, support tickets, the
notification ledger and the review card index. The client is constructed
explicitly and passed to each service; nothing in this module is global.

Every committed insert, update and delete is published to the ChangeFeed the
client was built with.

Usage:
    feed = ChangeFeed()
    async with Database("data/skylife.db", feed) as db:
        row = await db.insert("support_tickets", {...})
        rows = await db.select("job_applications", {"status": "pending"})
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import aiosqlite

from core.errors import NotFoundError
from core.realtime import EVENT_DELETE, EVENT_INSERT, EVENT_UPDATE, ChangeEvent, ChangeFeed
from utils import utc_iso

logger = logging.getLogger(__name__)

# Columns shared by every application table
APPLICATION_COLUMNS = """
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    discord_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    admin_notes TEXT,
    reviewed_by TEXT,
    reviewed_at TEXT,
    cooldown_notified INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
"""

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS whitelist_applications (
    {APPLICATION_COLUMNS},
    discord TEXT,
    steam_id TEXT,
    age INTEGER,
    experience TEXT,
    backstory TEXT
);

CREATE TABLE IF NOT EXISTS staff_applications (
    {APPLICATION_COLUMNS},
    full_name TEXT,
    discord_username TEXT,
    in_game_name TEXT,
    age INTEGER,
    position TEXT,
    availability TEXT,
    playtime TEXT,
    experience TEXT,
    previous_experience TEXT,
    why_join TEXT
);

CREATE TABLE IF NOT EXISTS job_applications (
    {APPLICATION_COLUMNS},
    character_name TEXT,
    age INTEGER,
    phone_number TEXT,
    job_type TEXT,
    previous_experience TEXT,
    availability TEXT,
    character_background TEXT,
    strengths TEXT,
    why_join TEXT,
    additional_info TEXT
);

CREATE TABLE IF NOT EXISTS ban_appeals (
    {APPLICATION_COLUMNS},
    discord_username TEXT,
    steam_id TEXT,
    ban_reason TEXT,
    appeal_reason TEXT,
    additional_info TEXT
);

CREATE TABLE IF NOT EXISTS creator_applications (
    {APPLICATION_COLUMNS},
    full_name TEXT,
    discord_username TEXT,
    platform TEXT,
    channel_url TEXT,
    average_viewers TEXT,
    content_frequency TEXT,
    content_style TEXT,
    rp_experience TEXT,
    why_join TEXT,
    social_links TEXT
);

CREATE TABLE IF NOT EXISTS firefighter_applications (
    {APPLICATION_COLUMNS},
    real_name TEXT,
    in_game_name TEXT,
    steam_id TEXT,
    weekly_availability TEXT
);

CREATE TABLE IF NOT EXISTS weazel_news_applications (
    {APPLICATION_COLUMNS},
    character_name TEXT,
    age INTEGER,
    phone_number TEXT,
    previous_experience TEXT,
    journalism_experience TEXT,
    camera_skills TEXT,
    writing_sample TEXT,
    interview_scenario TEXT,
    availability TEXT,
    character_background TEXT,
    why_join TEXT,
    additional_info TEXT
);

CREATE TABLE IF NOT EXISTS pdm_applications (
    {APPLICATION_COLUMNS},
    character_name TEXT,
    age INTEGER,
    phone_number TEXT,
    previous_experience TEXT,
    sales_experience TEXT,
    vehicle_knowledge TEXT,
    customer_scenario TEXT,
    availability TEXT,
    character_background TEXT,
    why_join TEXT,
    additional_info TEXT
);

CREATE TABLE IF NOT EXISTS gang_applications (
    {APPLICATION_COLUMNS},
    gang_name TEXT,
    leader_name TEXT,
    member_count INTEGER,
    gang_backstory TEXT,
    territory_plans TEXT,
    activity_level TEXT
);

CREATE TABLE IF NOT EXISTS support_tickets (
    id TEXT PRIMARY KEY,
    ticket_number TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    discord_id TEXT,
    discord_username TEXT,
    subject TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'other',
    priority TEXT NOT NULL DEFAULT 'normal',
    status TEXT NOT NULL DEFAULT 'open',
    description TEXT NOT NULL,
    attachment_url TEXT,
    admin_notes TEXT,
    resolution TEXT,
    resolved_by TEXT,
    resolved_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notification_log (
    id TEXT PRIMARY KEY,
    subject_table TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    status TEXT NOT NULL,
    state TEXT NOT NULL,
    message_id TEXT,
    error TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    payload TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(subject_table, subject_id, status)
);

CREATE TABLE IF NOT EXISTS review_messages (
    id TEXT PRIMARY KEY,
    message_id TEXT NOT NULL UNIQUE,
    channel_id TEXT NOT NULL,
    application_type TEXT NOT NULL,
    application_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_job_user ON job_applications(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_tickets_status ON support_tickets(status);
CREATE INDEX IF NOT EXISTS idx_review_application ON review_messages(application_id);
"""

FILTER_OPERATORS = ("=", "!=", "<", "<=", ">", ">=", "in")

Filters = Dict[str, Any]


async def get_db_connection(db_path: str) -> aiosqlite.Connection:
    """
    Open a connection with foreign keys enabled and dict-like rows.

    Args:
        db_path: Path to the database file

    Returns:
        aiosqlite.Connection
    """
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db


class Database:
    """Table-scoped async persistence client that publishes its writes."""

    def __init__(self, db_path: str, feed: Optional[ChangeFeed] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db_path = db_path
        self.feed = feed
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._conn: Optional[aiosqlite.Connection] = None
        self._columns: Dict[str, List[str]] = {}
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> "Database":
        if self._conn is not None:
            return self
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await get_db_connection(self.db_path)
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
            await self._load_columns()
            logger.info(f"Database initialized at {self.db_path}")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise
        return self

    async def close(self):
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    async def _load_columns(self):
        cursor = await self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        )
        tables = [row["name"] for row in await cursor.fetchall()]
        for table in tables:
            cursor = await self.connection.execute(f"PRAGMA table_info({table})")
            self._columns[table] = [row["name"] for row in await cursor.fetchall()]

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    @property
    def tables(self) -> List[str]:
        return list(self._columns)

    def columns(self, table: str) -> List[str]:
        if table not in self._columns:
            raise ValueError(f"Unknown table: {table}")
        return self._columns[table]

    def _check_columns(self, table: str, names: Iterable[str]):
        known = self.columns(table)
        for name in names:
            if name not in known:
                raise ValueError(f"Unknown column {name!r} for table {table}")

    def _where(self, table: str, filters: Optional[Filters]) -> Tuple[str, list]:
        if not filters:
            return "", []

        self._check_columns(table, filters)
        clauses = []
        params = []
        for column, condition in filters.items():
            if isinstance(condition, tuple):
                operator, value = condition
            else:
                operator, value = "=", condition

            if operator not in FILTER_OPERATORS:
                raise ValueError(f"Unsupported filter operator: {operator}")

            if operator == "in":
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif value is None and operator in ("=", "!="):
                clauses.append(f"{column} IS {'NOT ' if operator == '!=' else ''}NULL")
            else:
                clauses.append(f"{column} {operator} ?")
                params.append(value)

        return " WHERE " + " AND ".join(clauses), params

    async def _fetch_by_id(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        cursor = await self.connection.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    def _publish(self, table: str, event: str, new=None, old=None):
        if self.feed is not None:
            self.feed.publish(ChangeEvent(table=table, event=event, new=new, old=old))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def select(self, table: str, filters: Optional[Filters] = None, order_by: str = "created_at",
                     descending: bool = True, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Read rows from a table.

        Args:
            table: Table name
            filters: {column: value} for equality or {column: (operator, value)}
            order_by: Column to sort by
            descending: Sort direction
            limit: Maximum number of rows

        Returns:
            List of rows as dicts
        """
        where, params = self._where(table, filters)
        self._check_columns(table, [order_by])
        query = f"SELECT * FROM {table}{where} ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        cursor = await self.connection.execute(query, params)
        return [dict(row) for row in await cursor.fetchall()]

    async def select_one(self, table: str, filters: Optional[Filters] = None, order_by: str = "created_at",
                         descending: bool = True) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters, order_by=order_by, descending=descending, limit=1)
        return rows[0] if rows else None

    async def get(self, table: str, row_id: str) -> Dict[str, Any]:
        """Fetch a row by id, raising NotFoundError when it does not exist."""
        self.columns(table)
        row = await self._fetch_by_id(table, row_id)
        if row is None:
            raise NotFoundError(f"{table} row {row_id} not found")
        return row

    async def count(self, table: str, filters: Optional[Filters] = None) -> int:
        where, params = self._where(table, filters)
        cursor = await self.connection.execute(f"SELECT COUNT(*) AS total FROM {table}{where}", params)
        row = await cursor.fetchone()
        return row["total"]

    async def last_numbered(self, table: str, column: str) -> Optional[str]:
        """
        Highest value of a zero-padded sequence column such as TKT-000042.

        Longer values sort after shorter ones, so numbers that outgrow the
        padding still come last.
        """
        self._check_columns(table, [column])
        cursor = await self.connection.execute(
            f"SELECT {column} FROM {table} ORDER BY length({column}) DESC, {column} DESC LIMIT 1"
        )
        row = await cursor.fetchone()
        return row[column] if row else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a row and return it as stored.

        id, created_at and updated_at are filled in when not given.
        """
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        now = utc_iso(self.clock())
        row.setdefault("created_at", now)
        row.setdefault("updated_at", row["created_at"])
        self._check_columns(table, row)

        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        async with self._write_lock:
            try:
                await self.connection.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(row.values())
                )
                await self.connection.commit()
            except aiosqlite.Error:
                await self.connection.rollback()
                raise
            stored = await self._fetch_by_id(table, row["id"])

        logger.debug(f"Inserted {table} row {row['id']}")
        self._publish(table, EVENT_INSERT, new=stored)
        return stored

    async def update(self, table: str, row_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a row by id and return the new row.

        Raises:
            NotFoundError: the row does not exist
        """
        changes = dict(values)
        changes.setdefault("updated_at", utc_iso(self.clock()))
        changes.pop("id", None)
        self._check_columns(table, changes)

        assignments = ", ".join(f"{column} = ?" for column in changes)
        async with self._write_lock:
            old = await self._fetch_by_id(table, row_id)
            if old is None:
                raise NotFoundError(f"{table} row {row_id} not found")
            try:
                await self.connection.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?", [*changes.values(), row_id]
                )
                await self.connection.commit()
            except aiosqlite.Error:
                await self.connection.rollback()
                raise
            new = await self._fetch_by_id(table, row_id)

        logger.debug(f"Updated {table} row {row_id}: {', '.join(changes)}")
        self._publish(table, EVENT_UPDATE, new=new, old=old)
        return new

    async def delete(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        """Delete a row by id. Returns the deleted row, or None if it did not exist."""
        self.columns(table)
        async with self._write_lock:
            old = await self._fetch_by_id(table, row_id)
            if old is None:
                return None
            await self.connection.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            await self.connection.commit()

        logger.debug(f"Deleted {table} row {row_id}")
        self._publish(table, EVENT_DELETE, old=old)
        return old
