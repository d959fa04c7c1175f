"""Database layer for the club's book collection."""
import asyncio
import psycopg2
from contextlib import contextmanager
from psycopg2 import pool
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from typing import Optional, List, Dict, Any, AsyncIterator, Iterator
import logging

from bookclub.errors import TransportError
from bookclub.models import BookRecord

logger = logging.getLogger(__name__)

CHANNEL = "books_changed"

# Only these columns may change after a book is created
EDITABLE_COLUMNS = ("display_date", "proposer", "comments", "sort_date")

_BOOK_COLUMNS = """
    id::text, title, authors, status, sort_date, display_date, proposer,
    comments, cover_url, isbn, goodreads_link, wccls_link, multcolib_link
"""


def _row_to_book(row) -> BookRecord:
    return BookRecord(*row)


class BookStore:
    """PostgreSQL book collection with change notifications."""

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 10):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool; callers writing from
                several threads must stay within it
        """
        self.connection_string = connection_string
        self.max_conn = max_conn
        try:
            # Store calls run in worker threads
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                min_conn,
                max_conn,
                connection_string
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to the database: {e}")
            raise TransportError(f"Failed to connect to the database: {e}") from e

        if self.connection_pool:
            logger.info("Database connection pool created successfully")
        else:
            raise TransportError("Failed to create connection pool")

    @contextmanager
    def _connection(self, action: str) -> Iterator[Any]:
        """
        Check a connection out of the pool for one unit of work.

        Any psycopg2 failure, including an exhausted or closed pool, is
        rolled back and raised as TransportError.
        """
        conn = None
        try:
            conn = self.connection_pool.getconn()
            yield conn
        except psycopg2.Error as e:
            if conn is not None and not conn.closed:
                conn.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise TransportError(f"Failed to {action}: {e}") from e
        finally:
            if conn is not None:
                self.connection_pool.putconn(conn)

    def init_schema(self):
        """Create the books table and its change trigger if they don't exist."""
        with self._connection("initialize schema") as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS books (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        title TEXT NOT NULL,
                        authors TEXT[] NOT NULL,
                        status VARCHAR(16) NOT NULL
                            CHECK (status IN ('read', 'scheduled', 'suggested')),
                        sort_date TIMESTAMPTZ NOT NULL,
                        display_date TEXT NOT NULL DEFAULT '',
                        proposer TEXT NOT NULL DEFAULT '',
                        comments TEXT NOT NULL DEFAULT '',
                        cover_url TEXT,
                        isbn VARCHAR(32),
                        goodreads_link TEXT,
                        wccls_link TEXT,
                        multcolib_link TEXT,
                        created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_books_sort_date
                    ON books (sort_date DESC)
                """)

                # Every committed change wakes the listeners
                cur.execute(f"""
                    CREATE OR REPLACE FUNCTION notify_books_changed() RETURNS trigger AS $$
                    BEGIN
                        PERFORM pg_notify('{CHANNEL}', TG_OP);
                        RETURN NULL;
                    END;
                    $$ LANGUAGE plpgsql
                """)
                cur.execute(f"DROP TRIGGER IF EXISTS {CHANNEL} ON books")
                cur.execute(f"""
                    CREATE TRIGGER {CHANNEL}
                    AFTER INSERT OR UPDATE OR DELETE ON books
                    FOR EACH STATEMENT EXECUTE FUNCTION notify_books_changed()
                """)

                conn.commit()
                logger.info("Database schema initialized successfully")

    def insert_book(self, book: BookRecord) -> str:
        """
        Insert a new book.

        Args:
            book: Draft record; its ``id`` is ignored

        Returns:
            Identifier assigned by the database
        """
        with self._connection("insert book") as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO books (
                        title, authors, status, sort_date, display_date, proposer,
                        comments, cover_url, isbn, goodreads_link, wccls_link, multcolib_link
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id::text
                """, (
                    book.title, book.authors, book.status, book.sort_date,
                    book.display_date, book.proposer, book.comments,
                    book.cover_url, book.isbn, book.goodreads_link,
                    book.wccls_link, book.multcolib_link
                ))
                book_id = cur.fetchone()[0]
                conn.commit()
                logger.info(f"Inserted book {book_id}: {book.title}")
                return book_id

    def update_book(self, book_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update the editable fields of a book.

        Args:
            book_id: Book identifier
            fields: Column values, limited to ``EDITABLE_COLUMNS``

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - set(EDITABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Fields are not editable: {sorted(unknown)}")
        if not fields:
            return False

        columns = [c for c in EDITABLE_COLUMNS if c in fields]
        assignments = ", ".join(f"{c} = %s" for c in columns)

        with self._connection(f"update book {book_id}") as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE books SET {assignments} WHERE id = %s",
                    [fields[c] for c in columns] + [book_id]
                )
                updated = cur.rowcount
                conn.commit()
                return updated > 0

    def delete_book(self, book_id: str) -> bool:
        """Delete a book. Returns True if a row was removed."""
        with self._connection(f"delete book {book_id}") as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM books WHERE id = %s", (book_id,))
                deleted = cur.rowcount
                conn.commit()
                logger.info(f"Deleted book {book_id}")
                return deleted > 0

    def get_book(self, book_id: str) -> Optional[BookRecord]:
        """Get a book by ID."""
        with self._connection(f"get book {book_id}") as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = %s", (book_id,))

                row = cur.fetchone()
                if row:
                    return _row_to_book(row)
                return None

    def list_books(self) -> List[BookRecord]:
        """All books, most recent ``sort_date`` first."""
        with self._connection("list books") as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY sort_date DESC")
                return [_row_to_book(row) for row in cur.fetchall()]

    def get_stats(self) -> Dict[str, int]:
        """Count books per list."""
        with self._connection("count books") as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT status, COUNT(*) FROM books GROUP BY status")
                stats = {"read": 0, "scheduled": 0, "suggested": 0}
                for status, count in cur.fetchall():
                    stats[status] = count
                stats["total"] = sum(stats.values())
                return stats

    async def subscribe(self) -> AsyncIterator[List[BookRecord]]:
        """
        Yield the full collection now and again after every change.

        Uses a dedicated autocommit connection listening on ``books_changed``,
        watched by the running event loop.
        """
        loop = asyncio.get_running_loop()
        changed = asyncio.Event()

        try:
            listener = psycopg2.connect(self.connection_string)
            listener.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with listener.cursor() as cur:
                cur.execute(f"LISTEN {CHANNEL}")
        except psycopg2.Error as e:
            logger.error(f"Failed to listen on {CHANNEL}: {e}")
            raise TransportError(f"Failed to subscribe to changes: {e}") from e

        def on_notify():
            listener.poll()
            if listener.notifies:
                listener.notifies.clear()
                changed.set()

        loop.add_reader(listener, on_notify)
        logger.info(f"Listening for changes on {CHANNEL}")
        try:
            yield await asyncio.to_thread(self.list_books)
            while True:
                await changed.wait()
                changed.clear()
                yield await asyncio.to_thread(self.list_books)
        finally:
            loop.remove_reader(listener)
            listener.close()
            logger.info("Stopped listening for changes")

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
