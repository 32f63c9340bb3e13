"""SQLite-backed store of per-file chunks and embeddings.

Each row is ``(path, mtime, chunk_index, text, embedding)``. All rows for a
path share one ``mtime``, which the index builder compares against the file
on disk to decide whether to re-embed. A path's chunk set is always replaced
wholesale inside one transaction, so readers never see a mix of old and new
chunks.

The database runs in WAL mode with ``synchronous=NORMAL``: readers are not
blocked by a writer, and a crash may lose the most recent commits, which the
next index build re-embeds from the source files. Every operation opens its
own short-lived connection, so no handles are held between requests.
"""

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import orjson
from loguru import logger

from ..config.defaults import VECTOR_STORE_FILENAME
from .exceptions import VectorStoreError
from .models import Chunk


class VectorStore:
    """Durable chunk/embedding storage keyed by repository-relative path.

    Example:
        >>> store = VectorStore(Path("/repo"))
        >>> store.upsert("a.rb", 100, [chunk1, chunk2])
        >>> [c.chunk_index for c in store.find_chunks("a.rb")]
        [0, 1]
        >>> store.stored_mtime("a.rb")
        100
    """

    def __init__(self, repo_root: Path, db_filename: str = VECTOR_STORE_FILENAME) -> None:
        """Open (or create) the store beneath ``repo_root``.

        Args:
            repo_root: Repository root; the database lives under it
            db_filename: Database path relative to ``repo_root``

        Raises:
            VectorStoreError: If the database cannot be opened or initialized
        """
        self.repo_root = repo_root
        self.db_path = repo_root / db_filename
        self._write_lock = threading.Lock()
        self._closed = False
        self._init_schema()

    @contextmanager
    def _connect(self, action: str) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for one operation; SQLite errors become VectorStoreError."""
        if self._closed:
            raise VectorStoreError(
                f"Failed to {action}: vector store is closed",
                context={"db_path": str(self.db_path)},
            )
        try:
            conn = sqlite3.connect(self.db_path, isolation_level=None)
        except sqlite3.Error as e:
            raise VectorStoreError(
                f"Failed to open vector store at {self.db_path}: {e}",
                context={"db_path": str(self.db_path)},
            ) from e
        try:
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA temp_store=MEMORY")
            yield conn
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise VectorStoreError(
                f"Failed to {action}: {e}", context={"db_path": str(self.db_path)}
            ) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VectorStoreError(
                f"Failed to open vector store at {self.db_path}: {e}",
                context={"db_path": str(self.db_path)},
            ) from e

        with self._connect("initialize vector store") as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS items (
                    path TEXT NOT NULL,
                    mtime INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    embedding BLOB NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_path ON items (path)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_path_chunk ON items (path, chunk_index)"
            )

        logger.debug(f"vector store initialized: {self.db_path} (WAL mode)")

    def upsert(self, path: str, mtime: int, chunks: Sequence[Chunk]) -> None:
        """Replace every stored chunk for ``path`` with ``chunks``.

        Chunks are renumbered ``0..N-1`` in the order given. Delete and insert
        run in one transaction; on failure the previous chunk set survives.

        Raises:
            VectorStoreError: If the transaction fails
        """
        rows = [
            (path, int(mtime), idx, chunk.text, orjson.dumps(list(chunk.embedding)))
            for idx, chunk in enumerate(chunks)
        ]

        with self._write_lock, self._connect(f"upsert chunks for {path}") as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("DELETE FROM items WHERE path = ?", (path,))
            conn.executemany(
                "INSERT INTO items (path, mtime, chunk_index, text, embedding) "
                "VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            conn.execute("COMMIT")

        logger.debug(f"vector store: upserted {len(rows)} chunk(s) for {path} (mtime={mtime})")

    def find_chunks(self, path: str) -> list[Chunk]:
        """Stored chunks for ``path`` ordered by ``chunk_index``; ``[]`` if unknown."""
        with self._connect(f"read chunks for {path}") as conn:
            rows = conn.execute(
                "SELECT chunk_index, text, embedding FROM items "
                "WHERE path = ? ORDER BY chunk_index ASC",
                (path,),
            ).fetchall()

        return [
            Chunk(
                path=path,
                chunk_index=chunk_index,
                text=text,
                embedding=tuple(orjson.loads(embedding)),
            )
            for chunk_index, text, embedding in rows
        ]

    def stored_mtime(self, path: str) -> int | None:
        """The mtime watermark recorded for ``path``, or ``None`` if never indexed."""
        with self._connect(f"read mtime for {path}") as conn:
            row = conn.execute(
                "SELECT mtime FROM items WHERE path = ? LIMIT 1", (path,)
            ).fetchone()
        return row[0] if row else None

    def delete(self, path: str) -> int:
        """Remove every chunk for ``path``; returns the number of rows removed."""
        with self._write_lock, self._connect(f"delete chunks for {path}") as conn:
            cursor = conn.execute("DELETE FROM items WHERE path = ?", (path,))
            return cursor.rowcount

    def paths(self) -> list[str]:
        with self._connect("list indexed paths") as conn:
            rows = conn.execute("SELECT DISTINCT path FROM items ORDER BY path").fetchall()
        return [row[0] for row in rows]

    def count_items(self) -> int:
        with self._connect("count stored chunks") as conn:
            return conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

    def close(self) -> None:
        """Mark the store closed; later operations raise VectorStoreError."""
        self._closed = True

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
