"""Database storage layer for the assassin ring."""

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

import aiosqlite

from .config import DATABASE_PATH, SQLITE_BUSY_TIMEOUT_SECONDS
from .errors import RingConflict
from .models import Assignment, DareTemplate, Game, Group, Player, STATUS_ACTIVE, STATUS_ENDED, STATUS_SETUP

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS groups (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'setup' CHECK(status IN ('setup','active','ended')),
        version INTEGER NOT NULL DEFAULT 0,
        started_at INTEGER,
        ended_at INTEGER,
        winner_player_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        group_id TEXT NOT NULL,
        display_name TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 0,
        owner_identity TEXT,
        joined_at INTEGER NOT NULL,
        removed_at INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_players_group ON players(group_id)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_players_owner
        ON players(group_id, owner_identity) WHERE owner_identity IS NOT NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id TEXT NOT NULL,
        assassin_player_id TEXT NOT NULL REFERENCES players(id),
        target_player_id TEXT NOT NULL REFERENCES players(id),
        dare_text TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL,
        closed_at INTEGER,
        reason_closed TEXT CHECK(reason_closed IN ('eliminated','reseed','removed')),
        replaced_by_assignment_id INTEGER REFERENCES assignments(id),
        departed_player_id TEXT,
        CHECK(assassin_player_id <> target_player_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_assignments_group ON assignments(group_id, is_active)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_active_assassin
        ON assignments(group_id, assassin_player_id) WHERE is_active = 1
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_active_target
        ON assignments(group_id, target_player_id) WHERE is_active = 1
    """,
    """
    CREATE TABLE IF NOT EXISTS games (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id TEXT NOT NULL,
        started_at INTEGER NOT NULL,
        ended_at INTEGER,
        winner_player_id TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_games_group ON games(group_id, ended_at)",
    """
    CREATE TABLE IF NOT EXISTS dare_templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id TEXT NOT NULL,
        text TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS state (
        group_id TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY(group_id, key)
    )
    """,
]

ASSIGNMENT_COLUMNS = (
    "id, group_id, assassin_player_id, target_player_id, dare_text, is_active, created_at, "
    "closed_at, reason_closed, replaced_by_assignment_id, departed_player_id"
)


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class RingTransaction:
    """Queries bound to one open connection.

    Inside RingStorage.transaction() every call shares a single
    BEGIN IMMEDIATE transaction; inside RingStorage.read() it is read-only.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _fetchone(self, sql: str, params: Iterable = ()) -> Optional[aiosqlite.Row]:
        async with self.db.execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Iterable = ()) -> List[aiosqlite.Row]:
        async with self.db.execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    # Groups

    async def get_group(self, group_id: str) -> Optional[Group]:
        row = await self._fetchone("SELECT * FROM groups WHERE id = ?", (group_id,))
        return Group(**dict(row)) if row else None

    async def ensure_group(self, group_id: str) -> Group:
        """Get the group row, creating it in setup state if missing."""
        await self.db.execute("INSERT OR IGNORE INTO groups (id, status, version) VALUES (?, ?, 0)", (group_id, STATUS_SETUP))
        return await self.get_group(group_id)

    async def bump_version(self, group_id: str) -> int:
        await self.db.execute("UPDATE groups SET version = version + 1 WHERE id = ?", (group_id,))
        row = await self._fetchone("SELECT version FROM groups WHERE id = ?", (group_id,))
        return row[0]

    async def start_game(self, group_id: str, started_at: int):
        """Start a new game, closing any game the new ring replaces without a winner."""
        await self.db.execute(
            "UPDATE games SET ended_at = ? WHERE group_id = ? AND ended_at IS NULL", (started_at, group_id)
        )
        await self.db.execute(
            "INSERT INTO games (group_id, started_at) VALUES (?, ?)", (group_id, started_at)
        )
        await self.db.execute("""
            UPDATE groups SET status = ?, started_at = ?, ended_at = NULL, winner_player_id = NULL
            WHERE id = ?
        """, (STATUS_ACTIVE, started_at, group_id))

    async def end_game(self, group_id: str, winner_player_id: Optional[str], ended_at: int):
        await self.db.execute(
            "UPDATE games SET ended_at = ?, winner_player_id = ? WHERE group_id = ? AND ended_at IS NULL",
            (ended_at, winner_player_id, group_id)
        )
        await self.db.execute(
            "UPDATE groups SET status = ?, ended_at = ?, winner_player_id = ? WHERE id = ?",
            (STATUS_ENDED, ended_at, winner_player_id, group_id)
        )

    async def get_games(self, group_id: str) -> List[Game]:
        """Every game the group has played, oldest first."""
        rows = await self._fetchall("SELECT * FROM games WHERE group_id = ? ORDER BY started_at, id", (group_id,))
        return [Game(**dict(row)) for row in rows]

    # Players

    async def get_player(self, group_id: str, player_id: str) -> Optional[Player]:
        row = await self._fetchone("SELECT * FROM players WHERE id = ? AND group_id = ?", (player_id, group_id))
        return Player(**dict(row)) if row else None

    async def get_players(self, group_id: str, include_removed: bool = True) -> List[Player]:
        """Get players in join order."""
        sql = "SELECT * FROM players WHERE group_id = ?"
        if not include_removed:
            sql += " AND removed_at IS NULL"
        rows = await self._fetchall(sql + " ORDER BY joined_at, rowid", (group_id,))
        return [Player(**dict(row)) for row in rows]

    async def get_active_players(self, group_id: str) -> List[Player]:
        rows = await self._fetchall(
            "SELECT * FROM players WHERE group_id = ? AND is_active = 1 ORDER BY joined_at, rowid", (group_id,)
        )
        return [Player(**dict(row)) for row in rows]

    async def get_player_by_owner(self, group_id: str, owner_identity: str) -> Optional[Player]:
        row = await self._fetchone(
            "SELECT * FROM players WHERE group_id = ? AND owner_identity = ?", (group_id, owner_identity)
        )
        return Player(**dict(row)) if row else None

    async def find_players_by_name(self, group_id: str, display_name: str) -> List[Player]:
        rows = await self._fetchall(
            "SELECT * FROM players WHERE group_id = ? AND lower(display_name) = lower(?) ORDER BY joined_at, rowid",
            (group_id, display_name)
        )
        return [Player(**dict(row)) for row in rows]

    async def insert_player(self, player: Player):
        await self.db.execute("""
            INSERT INTO players (id, group_id, display_name, is_active, owner_identity, joined_at, removed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (player.id, player.group_id, player.display_name, player.is_active,
              player.owner_identity, player.joined_at, player.removed_at))

    async def update_player_profile(self, player: Player):
        """Update membership fields. Ring activity is only changed by the ring engine."""
        await self.db.execute("""
            UPDATE players SET display_name = ?, owner_identity = ?, removed_at = ?
            WHERE id = ? AND group_id = ?
        """, (player.display_name, player.owner_identity, player.removed_at, player.id, player.group_id))

    async def set_player_active(self, group_id: str, player_id: str, active: bool):
        await self.db.execute(
            "UPDATE players SET is_active = ? WHERE id = ? AND group_id = ?", (int(active), player_id, group_id)
        )

    async def set_ring_members(self, group_id: str, player_ids: List[str]):
        """Mark exactly player_ids active and every other player in the group inactive."""
        await self.db.execute("UPDATE players SET is_active = 0 WHERE group_id = ?", (group_id,))
        await self.db.executemany(
            "UPDATE players SET is_active = 1, removed_at = NULL WHERE id = ? AND group_id = ?",
            [(player_id, group_id) for player_id in player_ids]
        )

    # Assignments

    async def get_active_edges(self, group_id: str) -> List[Assignment]:
        rows = await self._fetchall(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments WHERE group_id = ? AND is_active = 1 ORDER BY id",
            (group_id,)
        )
        return [Assignment(**dict(row)) for row in rows]

    async def get_active_edge_for_assassin(self, group_id: str, assassin_id: str) -> Optional[Assignment]:
        row = await self._fetchone(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments "
            "WHERE group_id = ? AND assassin_player_id = ? AND is_active = 1",
            (group_id, assassin_id)
        )
        return Assignment(**dict(row)) if row else None

    async def get_active_edge_for_target(self, group_id: str, target_id: str) -> Optional[Assignment]:
        row = await self._fetchone(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments "
            "WHERE group_id = ? AND target_player_id = ? AND is_active = 1",
            (group_id, target_id)
        )
        return Assignment(**dict(row)) if row else None

    async def get_closed_edges(self, group_id: str, since: Optional[int] = None,
                               reasons: Optional[List[str]] = None, limit: Optional[int] = None) -> List[Assignment]:
        """Get closed edges, oldest closure first."""
        sql = f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments WHERE group_id = ? AND is_active = 0"
        params = [group_id]
        if since is not None:
            sql += " AND closed_at >= ?"
            params.append(since)
        if reasons:
            sql += f" AND reason_closed IN ({', '.join('?' for _ in reasons)})"
            params.extend(reasons)
        sql += " ORDER BY closed_at, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self._fetchall(sql, params)
        return [Assignment(**dict(row)) for row in rows]

    async def get_last_closure_as_target(self, group_id: str, player_id: str) -> Optional[Assignment]:
        row = await self._fetchone(
            f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments "
            "WHERE group_id = ? AND target_player_id = ? AND is_active = 0 "
            "ORDER BY closed_at DESC, id DESC LIMIT 1",
            (group_id, player_id)
        )
        return Assignment(**dict(row)) if row else None

    async def insert_assignment(self, group_id: str, assassin_id: str, target_id: str,
                                dare_text: str, created_at: int) -> Assignment:
        cursor = await self.db.execute("""
            INSERT INTO assignments (group_id, assassin_player_id, target_player_id, dare_text, is_active, created_at)
            VALUES (?, ?, ?, ?, 1, ?)
        """, (group_id, assassin_id, target_id, dare_text, created_at))
        return Assignment(
            id=cursor.lastrowid,
            group_id=group_id,
            assassin_player_id=assassin_id,
            target_player_id=target_id,
            dare_text=dare_text,
            is_active=1,
            created_at=created_at
        )

    async def close_assignment(self, assignment: Assignment, reason: str, closed_at: int,
                               departed_player_id: Optional[str] = None) -> Assignment:
        await self.db.execute("""
            UPDATE assignments SET is_active = 0, closed_at = ?, reason_closed = ?, departed_player_id = ?
            WHERE id = ? AND is_active = 1
        """, (closed_at, reason, departed_player_id, assignment.id))
        assignment.is_active = 0
        assignment.closed_at = closed_at
        assignment.reason_closed = reason
        assignment.departed_player_id = departed_player_id
        return assignment

    async def close_all_active(self, group_id: str, reason: str, closed_at: int) -> List[Assignment]:
        edges = await self.get_active_edges(group_id)
        for edge in edges:
            await self.close_assignment(edge, reason, closed_at)
        return edges

    async def set_replaced_by(self, assignments: List[Assignment], replacement_id: int):
        for assignment in assignments:
            await self.db.execute(
                "UPDATE assignments SET replaced_by_assignment_id = ? WHERE id = ?", (replacement_id, assignment.id)
            )
            assignment.replaced_by_assignment_id = replacement_id

    async def update_dare(self, assignment_id: int, dare_text: str):
        await self.db.execute(
            "UPDATE assignments SET dare_text = ? WHERE id = ? AND is_active = 1", (dare_text, assignment_id)
        )

    # Dare templates

    async def get_dare_templates(self, group_id: str, active_only: bool = True) -> List[DareTemplate]:
        sql = "SELECT * FROM dare_templates WHERE group_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        rows = await self._fetchall(sql + " ORDER BY id", (group_id,))
        return [DareTemplate(**dict(row)) for row in rows]

    async def insert_dare_template(self, group_id: str, text: str) -> DareTemplate:
        cursor = await self.db.execute(
            "INSERT INTO dare_templates (group_id, text, is_active) VALUES (?, ?, 1)", (group_id, text)
        )
        return DareTemplate(id=cursor.lastrowid, group_id=group_id, text=text, is_active=1)

    async def deactivate_dare_template(self, group_id: str, template_id: int) -> bool:
        cursor = await self.db.execute(
            "UPDATE dare_templates SET is_active = 0 WHERE id = ? AND group_id = ? AND is_active = 1",
            (template_id, group_id)
        )
        return cursor.rowcount > 0

    # Key/value state

    async def get_state(self, key: str, group_id: str) -> Optional[str]:
        row = await self._fetchone("SELECT value FROM state WHERE key = ? AND group_id = ?", (key, group_id))
        return row[0] if row else None

    async def set_state(self, key: str, value: str, group_id: str):
        await self.db.execute(
            "INSERT OR REPLACE INTO state (group_id, key, value) VALUES (?, ?, ?)", (group_id, key, value)
        )


class RingStorage:
    """Handles all database operations for the ring."""

    def __init__(self, db_path: str = DATABASE_PATH, busy_timeout: float = SQLITE_BUSY_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.busy_timeout = busy_timeout

    async def initialize(self):
        """Initialize the database with required tables."""
        async with aiosqlite.connect(self.db_path) as db:
            for statement in SCHEMA:
                await db.execute(statement)
            await db.commit()

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        return db

    @asynccontextmanager
    async def read(self) -> AsyncIterator[RingTransaction]:
        """Open a connection for reads outside any mutation."""
        db = await self._connect()
        try:
            yield RingTransaction(db)
        finally:
            await db.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RingTransaction]:
        """Run the body as one all-or-nothing write transaction.

        Any exception rolls every write back. SQLite lock timeouts surface
        as RingConflict.
        """
        db = await self._connect()
        try:
            try:
                await db.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    raise RingConflict() from e
                raise
            try:
                yield RingTransaction(db)
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            try:
                await db.execute("COMMIT")
            except sqlite3.OperationalError as e:
                await db.execute("ROLLBACK")
                if _is_lock_error(e):
                    raise RingConflict() from e
                raise
        finally:
            await db.close()

    # Read helpers for callers outside a mutation

    async def get_group(self, group_id: str) -> Optional[Group]:
        async with self.read() as tx:
            return await tx.get_group(group_id)

    async def get_player(self, group_id: str, player_id: str) -> Optional[Player]:
        async with self.read() as tx:
            return await tx.get_player(group_id, player_id)

    async def get_players(self, group_id: str, include_removed: bool = True) -> List[Player]:
        async with self.read() as tx:
            return await tx.get_players(group_id, include_removed)

    async def get_active_players(self, group_id: str) -> List[Player]:
        async with self.read() as tx:
            return await tx.get_active_players(group_id)

    async def get_player_by_owner(self, group_id: str, owner_identity: str) -> Optional[Player]:
        async with self.read() as tx:
            return await tx.get_player_by_owner(group_id, owner_identity)

    async def get_active_edges(self, group_id: str) -> List[Assignment]:
        async with self.read() as tx:
            return await tx.get_active_edges(group_id)

    async def get_closed_edges(self, group_id: str, since: Optional[int] = None,
                               reasons: Optional[List[str]] = None) -> List[Assignment]:
        async with self.read() as tx:
            return await tx.get_closed_edges(group_id, since, reasons)

    async def get_player_names(self, group_id: str) -> Dict[str, str]:
        players = await self.get_players(group_id)
        return {player.id: player.display_name for player in players}

    async def get_state(self, key: str, group_id: str) -> Optional[str]:
        async with self.read() as tx:
            return await tx.get_state(key, group_id)

    async def set_state(self, key: str, value: str, group_id: str):
        async with self.transaction() as tx:
            await tx.set_state(key, value, group_id)

