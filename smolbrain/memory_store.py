"""
Memory store using SQLite.

A single database file holds every piece of persisted state:
- memories: id, creation timestamp and immutable content
- tags: many-to-many association between memories and labels
- memories_fts: trigram full-text index over casefolded content (when available)
- embeddings: one vector per memory, stamped with its model identity

The connection runs in autocommit mode so transactions are explicit.
Writers take the database lock up front (BEGIN IMMEDIATE) and WAL mode
lets readers proceed while a write is in progress, which is what
concurrent command-line invocations against one store need.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .errors import StorageError
from .types import Memory, utc_now

logger = logging.getLogger(__name__)

# Bump when a migration step is added to _migrate()
SCHEMA_VERSION = 4

# Trigram tokens shorter than this cannot be looked up in the index
_MIN_INDEXED_TOKEN = 3


def _sql_casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


class MemoryStore:
    """
    SQLite-backed store for memories, tags, full-text index and vectors.

    Every method that changes state expects to be called inside
    ``transaction()``; single-statement writes called outside one run in
    their own implicit transaction.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False
        self.fts_available = False
        self._init_db()

    def _init_db(self) -> None:
        """Open the database and bring the schema up to date."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            # Wait up to 5 seconds for locks instead of failing immediately
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.create_function(
                "casefold", 1, _sql_casefold, deterministic=True,
            )
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open store at {self._db_path}: {e}") from e

        self._migrate()

    def _migrate(self) -> None:
        """
        Create missing structures. Additive and idempotent.

        Every step uses IF NOT EXISTS so an interrupted or concurrent
        migration is harmless; user_version only records progress.
        """
        version = self._execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise StorageError(
                f"Store schema version {version} is newer than supported ({SCHEMA_VERSION})"
            )

        with self.transaction():
            # v1: single-table layout of the first release
            self._execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
                    content TEXT NOT NULL
                )
            """)
            self._execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_timestamp
                ON memories(timestamp, id)
            """)

            # v2: tag association
            self._execute("""
                CREATE TABLE IF NOT EXISTS tags (
                    memory_id INTEGER NOT NULL REFERENCES memories(id),
                    tag TEXT NOT NULL,
                    PRIMARY KEY (memory_id, tag)
                ) WITHOUT ROWID
            """)
            self._execute("""
                CREATE INDEX IF NOT EXISTS idx_tags_tag
                ON tags(tag, memory_id)
            """)

            # v3: full-text index
            self.fts_available = self._ensure_fulltext_index()

            # v4: embeddings
            self._execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    memory_id INTEGER PRIMARY KEY REFERENCES memories(id),
                    model TEXT NOT NULL,
                    dim INTEGER NOT NULL,
                    vector BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._execute("""
                CREATE INDEX IF NOT EXISTS idx_embeddings_model
                ON embeddings(model)
            """)

            if version < SCHEMA_VERSION:
                logger.info("Migrated store schema %d -> %d", version, SCHEMA_VERSION)
                self._execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _ensure_fulltext_index(self) -> bool:
        """Create the trigram FTS table; backfill on creation.

        The index holds casefolded content, written by insert(), so it
        agrees with the casefolded substring test in fulltext_clause().

        Returns False when this SQLite build lacks FTS5 or the trigram
        tokenizer. Queries then fall back to a substring scan.
        """
        existed = self._table_exists("memories_fts")
        if not existed:
            try:
                self._execute_raw("""
                    CREATE VIRTUAL TABLE memories_fts
                    USING fts5(
                        content,
                        content='',
                        tokenize='trigram'
                    )
                """)
            except sqlite3.OperationalError as e:
                logger.info("Full-text index unavailable, using substring scan: %s", e)
                return False

        self.fts_available = True
        if not existed:
            rows = self._execute("SELECT id, content FROM memories").fetchall()
            for row in rows:
                self._index_content(row["id"], row["content"])
        return True

    def _table_exists(self, name: str) -> bool:
        row = self._execute(
            "SELECT 1 FROM sqlite_master WHERE name = ? AND type = 'table'",
            (name,),
        ).fetchone()
        return row is not None

    # -------------------------------------------------------------------------
    # Statement execution and transactions
    # -------------------------------------------------------------------------

    def _execute_raw(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        if self._conn is None:
            raise StorageError("Store is closed")
        return self._conn.execute(sql, tuple(params))

    def _execute(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        """Execute a statement, reporting SQLite failures as StorageError."""
        try:
            return self._execute_raw(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"Storage failure: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        """
        Run a block as one write transaction.

        Takes the write lock immediately so concurrent writers serialize
        instead of failing at commit time. Nested use joins the outer
        transaction. Any exception rolls the whole block back.
        """
        if self._in_transaction:
            yield self
            return

        self._execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            try:
                self._execute_raw("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning("Rollback failed: %s", e)
            raise
        else:
            self._in_transaction = False
            self._execute("COMMIT")

    @contextmanager
    def snapshot(self) -> Iterator["MemoryStore"]:
        """Run several reads against one consistent snapshot."""
        if self._in_transaction:
            yield self
            return

        self._execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        finally:
            self._in_transaction = False
            try:
                self._execute_raw("COMMIT")
            except sqlite3.Error as e:
                logger.warning("Ending read snapshot failed: %s", e)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def insert(self, content: str) -> tuple[int, str]:
        """
        Insert a memory. Content is stored verbatim.

        Returns:
            (id, timestamp) of the new memory
        """
        timestamp = utc_now()
        with self.transaction():
            cursor = self._execute(
                "INSERT INTO memories (timestamp, content) VALUES (?, ?)",
                (timestamp, content),
            )
            self._index_content(cursor.lastrowid, content)
        return cursor.lastrowid, timestamp

    def _index_content(self, id: int, content: str) -> None:
        # Content is immutable, so only inserts need indexing
        if self.fts_available:
            self._execute(
                "INSERT INTO memories_fts (rowid, content) VALUES (?, ?)",
                (id, content.casefold()),
            )

    def add_tag(self, id: int, tag: str) -> bool:
        """Add a tag. Idempotent; returns True if the tag was not present."""
        cursor = self._execute(
            "INSERT OR IGNORE INTO tags (memory_id, tag) VALUES (?, ?)",
            (id, tag),
        )
        return cursor.rowcount > 0

    def remove_tag(self, id: int, tag: str) -> bool:
        """Remove a tag. Returns False if it was absent."""
        cursor = self._execute(
            "DELETE FROM tags WHERE memory_id = ? AND tag = ?",
            (id, tag),
        )
        return cursor.rowcount > 0

    def put_embedding(self, id: int, model: str, dim: int, vector: bytes) -> None:
        """Store or replace the vector of a memory."""
        self._execute("""
            INSERT OR REPLACE INTO embeddings (memory_id, model, dim, vector, updated_at)
            VALUES (?, ?, ?, ?, ?)
        """, (id, model, dim, vector, utc_now()))

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    _SELECT = """
        SELECT m.id, m.timestamp, m.content, e.model
        FROM memories m
        LEFT JOIN embeddings e ON e.memory_id = m.id
    """

    def _rows_to_memories(self, rows: list[sqlite3.Row]) -> list[Memory]:
        tags = self.tags_for([row["id"] for row in rows])
        return [
            Memory(
                id=row["id"],
                timestamp=row["timestamp"],
                content=row["content"],
                tags=tags.get(row["id"], []),
                embedding_model=row["model"],
            )
            for row in rows
        ]

    def get(self, id: int) -> Optional[Memory]:
        """
        Get a memory by ID.

        Returns:
            Memory if found, None otherwise
        """
        row = self._execute(self._SELECT + " WHERE m.id = ?", (id,)).fetchone()
        if row is None:
            return None
        return self._rows_to_memories([row])[0]

    def get_many(self, ids: list[int]) -> dict[int, Memory]:
        """
        Get multiple memories by ID.

        Returns:
            Dict mapping id -> Memory (missing IDs omitted)
        """
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._execute(
            self._SELECT + f" WHERE m.id IN ({placeholders})", ids,
        ).fetchall()
        return {m.id: m for m in self._rows_to_memories(rows)}

    def exists(self, id: int) -> bool:
        """Check if a memory exists."""
        row = self._execute("SELECT 1 FROM memories WHERE id = ?", (id,)).fetchone()
        return row is not None

    def count(self) -> int:
        """Count all memories, archived included."""
        return self._execute("SELECT COUNT(*) FROM memories").fetchone()[0]

    def select(
        self,
        where: str,
        params: list,
        *,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Memory]:
        """
        Select memories matching a WHERE clause in chronological order.

        Args:
            where: SQL predicate over alias ``m`` (use "1" for all)
            params: Bound parameters for the predicate
            descending: Newest first instead of oldest first
            limit: Maximum rows (None for all)
            offset: Rows to skip in the chosen direction
        """
        direction = "DESC" if descending else "ASC"
        sql = (
            self._SELECT
            + f" WHERE {where} ORDER BY m.timestamp {direction}, m.id {direction}"
        )
        bound = list(params)
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            bound += [-1 if limit is None else limit, offset]
        return self._rows_to_memories(self._execute(sql, bound).fetchall())

    def count_where(self, where: str, params: list) -> int:
        """Count memories matching a WHERE clause over alias ``m``."""
        return self._execute(
            f"SELECT COUNT(*) FROM memories m WHERE {where}", params,
        ).fetchone()[0]

    # -------------------------------------------------------------------------
    # Tag Queries
    # -------------------------------------------------------------------------

    def list_tags(self, id: int) -> list[str]:
        """Tags of one memory, lexicographically sorted."""
        rows = self._execute(
            "SELECT tag FROM tags WHERE memory_id = ? ORDER BY tag", (id,),
        ).fetchall()
        return [row["tag"] for row in rows]

    def tags_for(self, ids: list[int]) -> dict[int, list[str]]:
        """Sorted tag lists for several memories at once."""
        if not ids:
            return {}
        result: dict[int, list[str]] = {}
        # Stay well below SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" * len(chunk))
            rows = self._execute(f"""
                SELECT memory_id, tag FROM tags
                WHERE memory_id IN ({placeholders})
                ORDER BY memory_id, tag
            """, chunk)
            for row in rows:
                result.setdefault(row["memory_id"], []).append(row["tag"])
        return result

    def tag_counts(self) -> list[tuple[str, int]]:
        """All distinct tags with the number of memories carrying each."""
        rows = self._execute("""
            SELECT tag, COUNT(*) AS n FROM tags
            GROUP BY tag
            ORDER BY tag
        """).fetchall()
        return [(row["tag"], row["n"]) for row in rows]

    @staticmethod
    def any_tag_clause(tags: Iterable[str]) -> tuple[str, list]:
        """Predicate: memory carries at least one of ``tags``."""
        tags = sorted(set(tags))
        placeholders = ",".join("?" * len(tags))
        return (
            f"m.id IN (SELECT memory_id FROM tags WHERE tag IN ({placeholders}))",
            tags,
        )

    @staticmethod
    def no_tag_clause(tag: str) -> tuple[str, list]:
        """Predicate: memory does not carry ``tag``."""
        return (
            "m.id NOT IN (SELECT memory_id FROM tags WHERE tag = ?)",
            [tag],
        )

    # -------------------------------------------------------------------------
    # Full-Text Queries
    # -------------------------------------------------------------------------

    def fulltext_clause(self, tokens: list[str]) -> tuple[str, list]:
        """
        Predicate: every token occurs in content, ignoring case.

        The trigram index over casefolded content narrows candidates for
        tokens of three or more characters; a casefolded substring test
        decides the match, so the result is the same whether or not the
        index exists.
        """
        clauses: list[str] = []
        params: list = []

        folded = [t.casefold() for t in tokens]
        indexed = [t for t in folded if len(t) >= _MIN_INDEXED_TOKEN]
        if self.fts_available and indexed:
            expr = " AND ".join('"' + t.replace('"', '""') + '"' for t in indexed)
            clauses.append(
                "m.id IN (SELECT rowid FROM memories_fts WHERE memories_fts MATCH ?)"
            )
            params.append(expr)

        for token in folded:
            clauses.append("instr(casefold(m.content), ?) > 0")
            params.append(token)

        return " AND ".join(clauses), params

    # -------------------------------------------------------------------------
    # Embedding Queries
    # -------------------------------------------------------------------------

    def vectors(
        self, where: str, params: list, model: str, dim: int,
    ) -> list[tuple[int, bytes]]:
        """(id, vector) pairs for matching memories with a ``model``/``dim`` vector, in id order."""
        rows = self._execute(f"""
            SELECT m.id, e.vector FROM memories m
            JOIN embeddings e ON e.memory_id = m.id
            WHERE e.model = ? AND e.dim = ? AND ({where})
            ORDER BY m.id
        """, [model, dim, *params]).fetchall()
        return [(row["id"], row["vector"]) for row in rows]

    def missing_embeddings(self, model: str, dim: int) -> list[tuple[int, str]]:
        """(id, content) of memories whose vector is absent, from another model
        or of another dimension."""
        rows = self._execute("""
            SELECT m.id, m.content FROM memories m
            LEFT JOIN embeddings e ON e.memory_id = m.id
            WHERE e.model IS NULL OR e.model != ? OR e.dim != ?
            ORDER BY m.id
        """, (model, dim)).fetchall()
        return [(row["id"], row["content"]) for row in rows]

    def embedding_models(self) -> dict[str, int]:
        """Vector counts per model identity."""
        rows = self._execute(
            "SELECT model, COUNT(*) AS n FROM embeddings GROUP BY model ORDER BY model"
        ).fetchall()
        return {row["model"]: row["n"] for row in rows}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
