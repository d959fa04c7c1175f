"""Tests for the PostgreSQL book store against a fake psycopg2 connection."""
import asyncio
import itertools
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from types import SimpleNamespace

import psycopg2
import pytest
from psycopg2.extensions import TRANSACTION_STATUS_IDLE

from bookclub.database import BookStore
from bookclub.errors import TransportError
from bookclub.models import BookRecord, Status
from bookclub.sync import CollectionSync

MARCH = datetime(2020, 3, 1, tzinfo=timezone.utc)

GOLDFINCH_ROW = (
    "b1", "The Goldfinch", ["Donna Tartt"], "read", MARCH, "March 2020", "Ana",
    "Long but good", None, "9780316055437", "https://gr", "https://wccls", "https://mcl",
)


class FakeCursor:
    def __init__(self, db):
        self.db = db
        self.rowcount = -1
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.db.delay:
            time.sleep(self.db.delay)
        if self.db.error is not None:
            raise self.db.error
        self.db.statements.append((" ".join(sql.split()), params))

        verb = sql.split()[0].upper()
        if verb == "INSERT":
            self._rows = [(f"book-{next(self.db.ids)}",)]
            self.rowcount = 1
        elif verb == "SELECT":
            self._rows = list(self.db.rows)
            self.rowcount = len(self._rows)
        else:
            self.rowcount = self.db.rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows


class FakeConnection:
    def __init__(self, db):
        self.db = db
        self.closed = 0
        self.commits = 0
        self.rollbacks = 0
        self.info = SimpleNamespace(transaction_status=TRANSACTION_STATUS_IDLE)

    def cursor(self):
        return FakeCursor(self.db)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class FakeDatabase:
    """What psycopg2.connect hands out: connections sharing one set of rows."""

    def __init__(self):
        self.rows = []
        self.rowcount = 1
        self.delay = 0.0
        self.error = None
        self.statements = []
        self.connections = []
        self.ids = itertools.count(1)

    def connect(self, *args, **kwargs):
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn


@pytest.fixture
def db(monkeypatch):
    fake = FakeDatabase()
    monkeypatch.setattr(psycopg2, "connect", fake.connect)
    return fake


def draft(title="The Goldfinch"):
    return BookRecord(
        id=None,
        title=title,
        authors=["Donna Tartt"],
        status=Status.READ,
        sort_date=MARCH,
        display_date="March 2020",
        proposer="Ana",
        comments="",
    )


def test_rows_map_to_book_records(db):
    db.rows = [GOLDFINCH_ROW]
    store = BookStore("dbname=club")

    book = store.list_books()[0]
    store.close()

    assert book.id == "b1"
    assert book.title == "The Goldfinch"
    assert book.authors == ["Donna Tartt"]
    assert book.status == Status.READ
    assert book.sort_date == MARCH
    assert book.display_date == "March 2020"
    assert book.proposer == "Ana"
    assert book.comments == "Long but good"
    assert book.cover_url is None
    assert book.isbn == "9780316055437"
    assert (book.goodreads_link, book.wccls_link, book.multcolib_link) == (
        "https://gr", "https://wccls", "https://mcl"
    )


def test_get_book_missing_is_none(db):
    store = BookStore("dbname=club")

    assert store.get_book("nope") is None
    store.close()


def test_insert_returns_generated_id(db):
    store = BookStore("dbname=club")

    book_id = store.insert_book(draft())
    store.close()

    assert book_id == "book-1"
    sql, params = db.statements[-1]
    assert sql.startswith("INSERT INTO books")
    assert params[:4] == ("The Goldfinch", ["Donna Tartt"], "read", MARCH)


def test_update_only_touches_editable_columns(db):
    store = BookStore("dbname=club")

    assert store.update_book("b1", {"comments": "Loved it", "proposer": "Bo"})
    store.close()

    sql, params = db.statements[-1]
    assert sql == "UPDATE books SET proposer = %s, comments = %s WHERE id = %s"
    assert params == ["Bo", "Loved it", "b1"]


@pytest.mark.parametrize("column", ["title", "authors", "isbn", "status"])
def test_update_rejects_fixed_columns(db, column):
    store = BookStore("dbname=club")

    with pytest.raises(ValueError, match="not editable"):
        store.update_book("b1", {column: "x", "comments": "ok"})
    store.close()

    assert db.statements == []


def test_update_and_delete_report_missing_rows(db):
    db.rowcount = 0
    store = BookStore("dbname=club")

    assert store.update_book("gone", {"comments": "x"}) is False
    assert store.delete_book("gone") is False
    store.close()


def test_stats_fill_in_empty_lists(db):
    db.rows = [("read", 3), ("suggested", 2)]
    store = BookStore("dbname=club")

    stats = store.get_stats()
    store.close()

    assert stats == {"read": 3, "scheduled": 0, "suggested": 2, "total": 5}


def test_database_errors_become_transport_errors(db):
    store = BookStore("dbname=club")
    db.error = psycopg2.OperationalError("server closed the connection unexpectedly")

    with pytest.raises(TransportError, match="insert book"):
        store.insert_book(draft())
    with pytest.raises(TransportError):
        store.get_book("b1")
    with pytest.raises(TransportError):
        store.get_stats()
    store.close()

    assert sum(conn.rollbacks for conn in db.connections) == 3


def test_closed_pool_is_transport_error(db):
    store = BookStore("dbname=club")
    store.close()

    with pytest.raises(TransportError, match="closed"):
        store.get_book("b1")


def test_failed_connect_is_transport_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(psycopg2, "connect", refuse)

    with pytest.raises(TransportError, match="connect"):
        BookStore("dbname=club")


@pytest.mark.asyncio
async def test_bulk_import_larger_than_pool_writes_everything(db, admin_session):
    db.delay = 0.02
    store = BookStore("dbname=club", max_conn=3)
    asyncio.get_running_loop().set_default_executor(ThreadPoolExecutor(max_workers=16))
    sync = CollectionSync(store, admin_session, max_concurrent=store.max_conn)

    written, failures = await sync.bulk_add([draft(f"Book {i}") for i in range(15)])
    store.close()

    assert failures == []
    assert written == 15
