"""Shared fixtures: an in-memory book store and signed-in sessions."""
import asyncio
import uuid
from dataclasses import replace

import pytest

from bookclub.errors import BookClubError
from bookclub.models import Identity
from bookclub.session import SessionGate

ADMIN = Identity(uid="u-admin", email="Admin@Club.org")
MEMBER = Identity(uid="u-member", email="reader@club.org")


class FakeStore:
    """In-memory stand-in for BookStore with the same interface."""

    def __init__(self, books=None):
        self.books = {}
        self.writes = []
        self.fail_titles = set()
        self._changed = asyncio.Event()
        self._loop = None
        for book in books or []:
            self.books[book.id] = book

    def _touch(self, op):
        self.writes.append(op)
        # Writes arrive from worker threads via asyncio.to_thread
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._changed.set)

    def insert_book(self, book):
        if book.title in self.fail_titles:
            raise BookClubError(f"write rejected: {book.title}")
        book_id = str(uuid.uuid4())
        self.books[book_id] = replace(book, id=book_id)
        self._touch(("insert", book_id))
        return book_id

    def update_book(self, book_id, fields):
        if book_id not in self.books:
            return False
        self.books[book_id] = replace(self.books[book_id], **fields)
        self._touch(("update", book_id))
        return True

    def delete_book(self, book_id):
        if self.books.pop(book_id, None) is None:
            return False
        self._touch(("delete", book_id))
        return True

    def get_book(self, book_id):
        return self.books.get(book_id)

    def list_books(self):
        return sorted(self.books.values(), key=lambda b: b.sort_date, reverse=True)

    async def subscribe(self):
        self._loop = asyncio.get_running_loop()
        yield self.list_books()
        while True:
            await self._changed.wait()
            self._changed.clear()
            yield self.list_books()


class FakeAuth:
    """Identity provider accepting one password for everyone."""

    def __init__(self, password="secret"):
        self.password = password
        self.closed = False

    async def sign_in(self, email, password):
        if password != self.password:
            raise BookClubError("Wrong password.")
        return Identity(uid=f"u-{email}", email=email)

    async def close(self):
        self.closed = True


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def session():
    return SessionGate(FakeAuth(), admin_emails=["admin@club.org"])


@pytest.fixture
def admin_session(session):
    session._set_current(ADMIN)
    return session


@pytest.fixture
def member_session(session):
    session._set_current(MEMBER)
    return session
