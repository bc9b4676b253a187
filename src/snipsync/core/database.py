"""Database operations for SnipSync.

This module provides the entity store: durable SQLite storage for folders,
snippets, snippet contents, tags, snippet-tag associations and the tombstone
log. It holds no merge logic; the merge engine decides what to write.

All methods return model dataclasses (see models.py), lists of them, or
primitives. A single Database instance is created at startup and shared by
reference between request handlers. Access to the underlying connection is
serialized with a lock, and a transaction holds the lock until it commits or
rolls back, so concurrent pushes apply one after another.

CRITICAL: This module must have NO Flask dependencies.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .models import (
    FOLDERS,
    SNIPPET_CONTENTS,
    SNIPPET_TAGS,
    SNIPPETS,
    TAGS,
    Folder,
    Snippet,
    SnippetContent,
    SnippetTag,
    Tag,
    Tombstone,
)

logger = logging.getLogger(__name__)

__all__ = ["Database", "StoreError"]


class StoreError(Exception):
    """Raised when the store fails (constraint violation, I/O, locking)."""


SCHEMA = """
CREATE TABLE IF NOT EXISTS folders (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    default_language TEXT NOT NULL DEFAULT '',
    parent_id TEXT,
    is_open INTEGER NOT NULL DEFAULT 0,
    order_index INTEGER NOT NULL DEFAULT 0,
    icon TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_folders_updated_at ON folders(updated_at);
CREATE INDEX IF NOT EXISTS idx_folders_parent_id ON folders(parent_id);

CREATE TABLE IF NOT EXISTS snippets (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    folder_id TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    is_favorites INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snippets_updated_at ON snippets(updated_at);
CREATE INDEX IF NOT EXISTS idx_snippets_folder_id ON snippets(folder_id);

CREATE TABLE IF NOT EXISTS snippet_contents (
    id TEXT PRIMARY KEY,
    snippet_id TEXT NOT NULL REFERENCES snippets(id) ON DELETE CASCADE,
    label TEXT,
    value TEXT,
    language TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snippet_contents_updated_at ON snippet_contents(updated_at);
CREATE INDEX IF NOT EXISTS idx_snippet_contents_snippet_id ON snippet_contents(snippet_id);

CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tags_updated_at ON tags(updated_at);

CREATE TABLE IF NOT EXISTS snippet_tags (
    snippet_id TEXT NOT NULL REFERENCES snippets(id) ON DELETE CASCADE,
    tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (snippet_id, tag_id)
);
CREATE INDEX IF NOT EXISTS idx_snippet_tags_created_at ON snippet_tags(created_at);
CREATE INDEX IF NOT EXISTS idx_snippet_tags_tag_id ON snippet_tags(tag_id);

CREATE TABLE IF NOT EXISTS tombstones (
    id TEXT PRIMARY KEY,
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    deleted_at INTEGER NOT NULL,
    UNIQUE (table_name, record_id)
);
CREATE INDEX IF NOT EXISTS idx_tombstones_deleted_at ON tombstones(deleted_at);
"""

# Model field name -> column name is the identity mapping for every entity,
# so asdict() of a model is directly usable as a column dict.
Params = Sequence[Any]


def _since_clause(column: str, since: Optional[int]) -> Tuple[str, Tuple[Any, ...]]:
    """Build the WHERE clause of a timestamp range query."""
    if since is None:
        return "", ()
    return f" WHERE {column} > ?", (since,)


class Database:
    """SQLite-backed entity store.

    Attributes:
        db_path: Path of the database file, or ':memory:'
        conn: The underlying sqlite3 connection
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Transactions are managed explicitly in transaction()
        self.conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        self.conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(SCHEMA)
        logger.info(f"Opened database at {self.db_path}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
        logger.info(f"Closed database at {self.db_path}")

    # ============================================================================
    # Transactions and low-level helpers
    # ============================================================================

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator["Database"]:
        """Run a block of operations atomically.

        Commits when the block exits normally and rolls back on any exception.
        A transaction opened inside another one joins the outer transaction.

        Args:
            immediate: Take the write lock at BEGIN (pushes). Read-only
                snapshots (pulls) pass False.

        Raises:
            StoreError: If SQLite fails to begin or commit
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            try:
                self.conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN DEFERRED")
            except sqlite3.Error as e:
                raise StoreError(f"Could not begin transaction: {e}") from e

            self._depth = 1
            try:
                yield self
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    self.conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback()
                    raise StoreError(f"Could not commit transaction: {e}") from e
            finally:
                self._depth = 0

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")
            logger.warning("Transaction rolled back")

    def _execute(self, sql: str, params: Params = ()) -> int:
        """Execute a write statement and return the affected row count."""
        with self._lock:
            try:
                return self.conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetch_one(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetch_all(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _insert(self, table: str, values: Dict[str, Any], or_ignore: bool = False) -> bool:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        sql = f"{verb} INTO {table} ({columns}) VALUES ({placeholders})"
        return self._execute(sql, tuple(values.values())) > 0

    def _update(self, table: str, record_id: str, values: Dict[str, Any]) -> bool:
        values = {k: v for k, v in values.items() if k not in ("id", "created_at")}
        assignments = ", ".join(f"{column} = ?" for column in values)
        sql = f"UPDATE {table} SET {assignments} WHERE id = ?"
        return self._execute(sql, tuple(values.values()) + (record_id,)) > 0

    # ============================================================================
    # Folders
    # ============================================================================

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        """Get a folder by ID."""
        row = self._fetch_one("SELECT * FROM folders WHERE id = ?", (folder_id,))
        return Folder.from_row(row) if row else None

    def insert_folder(self, folder: Folder) -> None:
        """Insert a new folder. Raises StoreError if the ID already exists."""
        self._insert(FOLDERS, asdict(folder))

    def update_folder(self, folder: Folder) -> bool:
        """Overwrite the mutable fields of a folder (created_at is kept)."""
        return self._update(FOLDERS, folder.id, asdict(folder))

    def delete_folder(self, folder_id: str) -> bool:
        """Delete a folder.

        Snippets and child folders that reference it are left untouched;
        clients learn about the deletion from its tombstone.
        """
        return self._execute("DELETE FROM folders WHERE id = ?", (folder_id,)) > 0

    def get_folders(self, since: Optional[int] = None) -> List[Folder]:
        """Get folders updated after `since` (all folders if None), ordered by ID."""
        where, params = _since_clause("updated_at", since)
        rows = self._fetch_all(f"SELECT * FROM folders{where} ORDER BY id", params)
        return [Folder.from_row(row) for row in rows]

    # ============================================================================
    # Snippets
    # ============================================================================

    def get_snippet(self, snippet_id: str) -> Optional[Snippet]:
        """Get a snippet by ID."""
        row = self._fetch_one("SELECT * FROM snippets WHERE id = ?", (snippet_id,))
        return Snippet.from_row(row) if row else None

    def insert_snippet(self, snippet: Snippet) -> None:
        """Insert a new snippet. Raises StoreError if the ID already exists."""
        self._insert(SNIPPETS, asdict(snippet))

    def update_snippet(self, snippet: Snippet) -> bool:
        """Overwrite the mutable fields of a snippet."""
        return self._update(SNIPPETS, snippet.id, asdict(snippet))

    def delete_snippet(self, snippet_id: str) -> bool:
        """Delete a snippet together with its contents and tag associations."""
        with self.transaction():
            self._execute("DELETE FROM snippet_tags WHERE snippet_id = ?", (snippet_id,))
            self._execute("DELETE FROM snippet_contents WHERE snippet_id = ?", (snippet_id,))
            return self._execute("DELETE FROM snippets WHERE id = ?", (snippet_id,)) > 0

    def get_snippets(self, since: Optional[int] = None) -> List[Snippet]:
        """Get snippets updated after `since` (all snippets if None), ordered by ID."""
        where, params = _since_clause("updated_at", since)
        rows = self._fetch_all(f"SELECT * FROM snippets{where} ORDER BY id", params)
        return [Snippet.from_row(row) for row in rows]

    # ============================================================================
    # Snippet contents
    # ============================================================================

    def get_snippet_content(self, content_id: str) -> Optional[SnippetContent]:
        """Get a snippet content by ID."""
        row = self._fetch_one("SELECT * FROM snippet_contents WHERE id = ?", (content_id,))
        return SnippetContent.from_row(row) if row else None

    def insert_snippet_content(self, content: SnippetContent) -> None:
        """Insert a new snippet content.

        Raises StoreError if the ID already exists or the owning snippet
        does not.
        """
        self._insert(SNIPPET_CONTENTS, asdict(content))

    def update_snippet_content(self, content: SnippetContent) -> bool:
        """Overwrite the mutable fields of a snippet content."""
        return self._update(SNIPPET_CONTENTS, content.id, asdict(content))

    def delete_snippet_content(self, content_id: str) -> bool:
        """Delete a snippet content."""
        return self._execute("DELETE FROM snippet_contents WHERE id = ?", (content_id,)) > 0

    def get_snippet_contents(self, since: Optional[int] = None) -> List[SnippetContent]:
        """Get snippet contents updated after `since`, ordered by ID."""
        where, params = _since_clause("updated_at", since)
        rows = self._fetch_all(f"SELECT * FROM snippet_contents{where} ORDER BY id", params)
        return [SnippetContent.from_row(row) for row in rows]

    def get_contents_for_snippet(self, snippet_id: str) -> List[SnippetContent]:
        """Get all contents owned by a snippet."""
        rows = self._fetch_all(
            "SELECT * FROM snippet_contents WHERE snippet_id = ? ORDER BY id", (snippet_id,)
        )
        return [SnippetContent.from_row(row) for row in rows]

    # ============================================================================
    # Tags
    # ============================================================================

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        """Get a tag by ID."""
        row = self._fetch_one("SELECT * FROM tags WHERE id = ?", (tag_id,))
        return Tag.from_row(row) if row else None

    def insert_tag(self, tag: Tag) -> None:
        """Insert a new tag. Raises StoreError if the ID already exists."""
        self._insert(TAGS, asdict(tag))

    def update_tag(self, tag: Tag) -> bool:
        """Overwrite the mutable fields of a tag."""
        return self._update(TAGS, tag.id, asdict(tag))

    def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag and its snippet associations. Snippets are kept."""
        with self.transaction():
            self._execute("DELETE FROM snippet_tags WHERE tag_id = ?", (tag_id,))
            return self._execute("DELETE FROM tags WHERE id = ?", (tag_id,)) > 0

    def get_tags(self, since: Optional[int] = None) -> List[Tag]:
        """Get tags updated after `since` (all tags if None), ordered by ID."""
        where, params = _since_clause("updated_at", since)
        rows = self._fetch_all(f"SELECT * FROM tags{where} ORDER BY id", params)
        return [Tag.from_row(row) for row in rows]

    # ============================================================================
    # Snippet-tag associations
    # ============================================================================

    def get_snippet_tag(self, snippet_id: str, tag_id: str) -> Optional[SnippetTag]:
        """Get a snippet-tag association."""
        row = self._fetch_one(
            "SELECT * FROM snippet_tags WHERE snippet_id = ? AND tag_id = ?",
            (snippet_id, tag_id),
        )
        return SnippetTag.from_row(row) if row else None

    def insert_snippet_tag(self, snippet_tag: SnippetTag) -> bool:
        """Insert an association if absent. Returns False if it already existed."""
        return self._insert(SNIPPET_TAGS, asdict(snippet_tag), or_ignore=True)

    def delete_snippet_tag(self, snippet_id: str, tag_id: str) -> bool:
        """Delete a snippet-tag association."""
        return self._execute(
            "DELETE FROM snippet_tags WHERE snippet_id = ? AND tag_id = ?",
            (snippet_id, tag_id),
        ) > 0

    def get_snippet_tags(self, since: Optional[int] = None) -> List[SnippetTag]:
        """Get associations created after `since`, ordered by (snippet_id, tag_id)."""
        where, params = _since_clause("created_at", since)
        rows = self._fetch_all(
            f"SELECT * FROM snippet_tags{where} ORDER BY snippet_id, tag_id", params
        )
        return [SnippetTag.from_row(row) for row in rows]

    def get_tags_for_snippet(self, snippet_id: str) -> List[SnippetTag]:
        """Get all associations of a snippet."""
        rows = self._fetch_all(
            "SELECT * FROM snippet_tags WHERE snippet_id = ? ORDER BY tag_id", (snippet_id,)
        )
        return [SnippetTag.from_row(row) for row in rows]

    # ============================================================================
    # Tombstones
    # ============================================================================

    def get_tombstone(self, table_name: str, record_id: str) -> Optional[Tombstone]:
        """Get the tombstone of a deleted record, if any."""
        row = self._fetch_one(
            "SELECT * FROM tombstones WHERE table_name = ? AND record_id = ?",
            (table_name, record_id),
        )
        return Tombstone.from_row(row) if row else None

    def add_tombstone(self, tombstone: Tombstone) -> bool:
        """Append a tombstone unless one exists for the same record.

        Returns:
            True if a new tombstone was written
        """
        return self._insert("tombstones", asdict(tombstone), or_ignore=True)

    def delete_tombstone(self, table_name: str, record_id: str) -> bool:
        """Remove the tombstone of a record that exists again.

        Only snippet-tag pairs come back after a deletion; entity IDs are
        never reused.
        """
        return self._execute(
            "DELETE FROM tombstones WHERE table_name = ? AND record_id = ?",
            (table_name, record_id),
        ) > 0

    def get_tombstones(self, since: Optional[int] = None) -> List[Tombstone]:
        """Get tombstones with deleted_at after `since`, ordered by (table, record)."""
        where, params = _since_clause("deleted_at", since)
        rows = self._fetch_all(
            f"SELECT * FROM tombstones{where} ORDER BY table_name, record_id", params
        )
        return [Tombstone.from_row(row) for row in rows]

    # ============================================================================
    # Statistics
    # ============================================================================

    def get_counts(self) -> Dict[str, int]:
        """Get row counts per table."""
        counts: Dict[str, int] = {}
        for table in (FOLDERS, SNIPPETS, SNIPPET_CONTENTS, TAGS, SNIPPET_TAGS, "tombstones"):
            row = self._fetch_one(f"SELECT COUNT(*) AS n FROM {table}")
            counts[table] = row["n"] if row else 0
        return counts
