"""Tests for the collection subscription and mutations."""
import asyncio
import threading
import time
from datetime import datetime, timezone

import pytest

from bookclub.errors import AuthorizationError, BookClubError
from bookclub.models import BookRecord, EditRequest, SearchResultRecord, Status
from bookclub.sync import CollectionSync

from conftest import FakeStore

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

RESULT = SearchResultRecord(
    key="v1",
    title="Project Hail Mary",
    authors=["Andy Weir"],
    cover_url="https://books.google.com/phm.jpg",
    isbn="9780593135204",
)


def stored(book_id="b1", display_date="March 2020"):
    return BookRecord(
        id=book_id,
        title="The Goldfinch",
        authors=["Donna Tartt"],
        status=Status.READ,
        sort_date=datetime(2020, 3, 1, tzinfo=timezone.utc),
        display_date=display_date,
        proposer="Ana",
        comments="",
    )


@pytest.mark.asyncio
async def test_add_read_by_member_is_rejected(store, member_session):
    sync = CollectionSync(store, member_session)

    with pytest.raises(AuthorizationError):
        await sync.add(RESULT, Status.READ)

    assert store.writes == []


@pytest.mark.asyncio
async def test_add_when_signed_out_is_rejected(store, session):
    sync = CollectionSync(store, session)

    with pytest.raises(AuthorizationError, match="log in"):
        await sync.add(RESULT)

    assert store.writes == []


@pytest.mark.asyncio
async def test_member_may_suggest(store, member_session):
    sync = CollectionSync(store, member_session)

    book_id = await sync.add(RESULT, now=NOW)
    book = store.books[book_id]

    assert book.status == Status.SUGGESTED
    assert book.proposer == "reader"
    assert book.display_date == ""
    assert book.sort_date == NOW


@pytest.mark.asyncio
async def test_admin_add_read_writes_one_document(store, admin_session):
    sync = CollectionSync(store, admin_session)

    book_id = await sync.add(RESULT, Status.READ, now=NOW)

    assert store.writes == [("insert", book_id)]
    book = store.books[book_id]
    assert book.status == Status.READ
    assert book.display_date == "10/18/2026"
    assert book.isbn == "9780593135204"
    assert book.cover_url == "https://books.google.com/phm.jpg"
    assert book.goodreads_link.endswith("Project%20Hail%20Mary%20Andy%20Weir")


@pytest.mark.asyncio
async def test_add_details_override_defaults(store, admin_session):
    sync = CollectionSync(store, admin_session)

    book_id = await sync.add(
        RESULT,
        Status.SCHEDULED,
        EditRequest(display_date="January 2027", proposer="Ben", comments="sci-fi month"),
        now=NOW,
    )
    book = store.books[book_id]

    assert book.display_date == "January 2027"
    assert book.sort_date == datetime(2027, 1, 1, tzinfo=timezone.utc)
    assert book.proposer == "Ben"
    assert book.comments == "sci-fi month"


@pytest.mark.asyncio
async def test_add_unparsable_date_keeps_now(store, admin_session):
    sync = CollectionSync(store, admin_session)

    book_id = await sync.add(RESULT, Status.READ, EditRequest(display_date="sometime"), now=NOW)

    assert store.books[book_id].sort_date == NOW
    assert store.books[book_id].display_date == "sometime"


@pytest.mark.asyncio
async def test_update_changes_only_editable_fields(admin_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, admin_session)

    ok = await sync.update("b1", EditRequest(display_date="April 2020", proposer="Cy", comments="Loved it"))
    book = store.books["b1"]

    assert ok
    assert book.display_date == "April 2020"
    assert book.sort_date == datetime(2020, 4, 1, tzinfo=timezone.utc)
    assert book.proposer == "Cy"
    assert book.comments == "Loved it"
    assert book.title == "The Goldfinch"


@pytest.mark.asyncio
async def test_update_keeps_sort_date_when_date_unchanged_or_unparsable(admin_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, admin_session)
    original = store.books["b1"].sort_date

    await sync.update("b1", EditRequest(display_date="March 2020", proposer="Ana", comments="x"))
    assert store.books["b1"].sort_date == original

    await sync.update("b1", EditRequest(display_date="TBD", proposer="Ana", comments="x"))
    assert store.books["b1"].sort_date == original
    assert store.books["b1"].display_date == "TBD"


@pytest.mark.asyncio
async def test_update_declined_field_writes_nothing(admin_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, admin_session)

    ok = await sync.update("b1", EditRequest(display_date="April 2020", proposer=None, comments="x"))

    assert not ok
    assert store.writes == []


@pytest.mark.asyncio
async def test_update_and_remove_refused_for_members(member_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, member_session)

    assert not await sync.update("b1", EditRequest("April 2020", "Cy", ""))
    assert not await sync.remove("b1")
    assert store.writes == []
    assert "b1" in store.books


@pytest.mark.asyncio
async def test_admin_remove(admin_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, admin_session)

    assert await sync.remove("b1")
    assert store.books == {}


@pytest.mark.asyncio
async def test_subscription_replaces_snapshot(admin_session):
    store = FakeStore([stored()])
    sync = CollectionSync(store, admin_session)
    pushes = []
    sync.on_snapshot(pushes.append)

    sync.start()
    await sync.wait_ready()
    assert [b.id for b in sync.snapshot] == ["b1"]

    await sync.add(RESULT, Status.SUGGESTED, now=NOW)
    for _ in range(20):
        if len(sync.snapshot) == 2:
            break
        await asyncio.sleep(0.01)
    await sync.stop()

    assert len(sync.snapshot) == 2
    assert sync.snapshot[0].title == "Project Hail Mary"
    assert len(pushes) >= 2


@pytest.mark.asyncio
async def test_bulk_add_reports_partial_failure(admin_session, store):
    sync = CollectionSync(store, admin_session)
    drafts = [stored(book_id=None), stored(book_id=None), stored(book_id=None)]
    drafts[1].title = "Rejected"
    store.fail_titles.add("Rejected")

    written, failures = await sync.bulk_add(drafts)

    assert written == 2
    assert len(failures) == 1
    assert len(store.books) == 2


@pytest.mark.asyncio
async def test_bulk_add_requires_admin(member_session, store):
    sync = CollectionSync(store, member_session)

    with pytest.raises(AuthorizationError):
        await sync.bulk_add([stored(book_id=None)])
    assert store.writes == []


@pytest.mark.asyncio
async def test_add_to_unknown_list_is_rejected(store, admin_session):
    sync = CollectionSync(store, admin_session)

    with pytest.raises(BookClubError, match="Unknown list"):
        await sync.add(RESULT, "wishlist")
    assert store.writes == []


@pytest.mark.asyncio
async def test_add_without_authors_links_match_stored_authors(store, member_session):
    sync = CollectionSync(store, member_session)
    anonymous = SearchResultRecord(key="v9", title="Beowulf", authors=[])

    book = store.books[await sync.add(anonymous, now=NOW)]

    assert book.authors == ["Unknown"]
    assert book.goodreads_link == "https://www.goodreads.com/search?q=Beowulf%20Unknown"


class SlowStore(FakeStore):
    """Records how many inserts overlap."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def insert_book(self, book):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        try:
            return super().insert_book(book)
        finally:
            with self._lock:
                self.active -= 1


@pytest.mark.asyncio
async def test_bulk_add_limits_writes_in_flight(admin_session):
    store = SlowStore()
    sync = CollectionSync(store, admin_session, max_concurrent=3)

    written, failures = await sync.bulk_add([stored(book_id=None) for _ in range(12)])

    assert written == 12
    assert failures == []
    assert store.peak <= 3
