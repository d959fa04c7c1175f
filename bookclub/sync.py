"""Live copy of the book collection and the mutations members can make."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple, Union

from bookclub.dates import is_sentinel, parse_date
from bookclub.errors import AuthorizationError, BookClubError
from bookclub.models import (
    BookRecord,
    EditRequest,
    SearchResultRecord,
    Status,
    build_catalog_links,
)
from bookclub.session import SessionGate

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[List[BookRecord]], None]


class CollectionSync:
    """
    Keeps a local snapshot of the ``books`` collection fresh and writes to it.

    The store pushes the whole collection on every change, so each push
    replaces the snapshot outright. Writes go straight to the store; the
    snapshot catches up through the subscription.
    """

    def __init__(self, store, session: SessionGate, max_concurrent: int = 5):
        """
        Args:
            store: Book store exposing ``subscribe``, ``insert_book``,
                ``update_book``, ``delete_book`` and ``get_book``
            session: Gate deciding who may write
            max_concurrent: Most store writes in flight during a bulk add;
                keep it within the store's connection pool
        """
        self.store = store
        self.session = session
        self.max_concurrent = max_concurrent
        self.snapshot: List[BookRecord] = []
        self._listeners: List[SnapshotListener] = []
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def on_snapshot(self, listener: SnapshotListener):
        self._listeners.append(listener)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._consume())

    async def wait_ready(self):
        """Wait until the first snapshot has arrived."""
        await self._ready.wait()

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _consume(self):
        try:
            async for books in self.store.subscribe():
                self.snapshot = list(books)
                logger.info(f"Collection snapshot: {len(self.snapshot)} books")
                self._ready.set()
                for listener in list(self._listeners):
                    listener(self.snapshot)
        except BookClubError as e:
            logger.error(f"Collection subscription ended: {e}")
            # Unblock wait_ready so callers can report the empty collection
            self._ready.set()

    def _is_admin(self) -> bool:
        return self.session.is_admin(self.session.current)

    def find(self, book_id: str) -> Optional[BookRecord]:
        return next((b for b in self.snapshot if b.id == book_id), None)

    async def add(
        self,
        book: Union[SearchResultRecord, BookRecord],
        status: str = Status.SUGGESTED,
        details: Optional[EditRequest] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Add a book to one of the lists.

        Any member may suggest a book; only admins may add to the read or
        scheduled lists. A display date in ``details`` that parses becomes
        the sort date, otherwise the book sorts by when it was added.

        Args:
            book: Search result (or existing record) to copy
            status: Target list
            details: Optional date, proposer and comments
            now: Reference time for defaults

        Returns:
            Identifier of the new book

        Raises:
            AuthorizationError: Signed out, or not allowed to use this list
            BookClubError: ``status`` is not one of the lists
        """
        identity = self.session.current
        if identity is None:
            raise AuthorizationError("Please log in to add books!")
        if status not in Status.ALL:
            raise BookClubError(f"Unknown list: {status!r}")
        if status != Status.SUGGESTED and not self._is_admin():
            raise AuthorizationError("Only admins can add to the Read or Scheduled lists.")

        now = now or datetime.now(timezone.utc)
        display_date = now.strftime("%m/%d/%Y") if status == Status.READ else ""
        sort_date = now
        proposer = identity.email.split("@")[0]
        comments = ""

        details = details or EditRequest()
        if details.display_date is not None:
            display_date = details.display_date
            parsed = parse_date(display_date)
            if not is_sentinel(parsed):
                sort_date = parsed
        if details.proposer is not None:
            proposer = details.proposer
        if details.comments is not None:
            comments = details.comments

        authors = list(book.authors) or ["Unknown"]
        record = BookRecord(
            id=None,
            title=book.title,
            authors=authors,
            status=status,
            sort_date=sort_date,
            display_date=display_date,
            proposer=proposer,
            comments=comments,
            cover_url=book.cover_url or None,
            isbn=book.isbn or None,
            **build_catalog_links(book.title, authors),
        )
        book_id = await asyncio.to_thread(self.store.insert_book, record)
        logger.info(f"Added '{record.title}' to {status} as {book_id}")
        return book_id

    async def update(self, book_id: str, edit: EditRequest) -> bool:
        """
        Edit a book's date, proposer and comments.

        Returns False without writing when the member is not an admin or
        declined any of the three fields.
        """
        if not self._is_admin():
            logger.warning(f"Refused edit of {book_id}: not an admin")
            return False
        if not edit.complete:
            logger.info(f"Edit of {book_id} cancelled")
            return False

        current = self.find(book_id)
        if current is None:
            current = await asyncio.to_thread(self.store.get_book, book_id)
        if current is None:
            logger.warning(f"Edit of unknown book {book_id}")
            return False

        sort_date = current.sort_date
        if edit.display_date != current.display_date:
            parsed = parse_date(edit.display_date)
            if not is_sentinel(parsed):
                sort_date = parsed

        return await asyncio.to_thread(self.store.update_book, book_id, {
            "display_date": edit.display_date,
            "proposer": edit.proposer,
            "comments": edit.comments,
            "sort_date": sort_date,
        })

    async def remove(self, book_id: str) -> bool:
        """Delete a book. Non-admins are silently refused."""
        if not self._is_admin():
            logger.warning(f"Refused delete of {book_id}: not an admin")
            return False
        return await asyncio.to_thread(self.store.delete_book, book_id)

    async def bulk_add(self, drafts: Sequence[BookRecord]) -> Tuple[int, List[BaseException]]:
        """
        Write imported drafts concurrently, at most ``max_concurrent`` at a time.

        Writes are independent: a failure is reported but earlier and
        later writes still stand.

        Returns:
            (number written, failures)
        """
        if not self._is_admin():
            raise AuthorizationError("Only admins can import books.")

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def write(draft: BookRecord) -> str:
            async with semaphore:
                return await asyncio.to_thread(self.store.insert_book, draft)

        results = await asyncio.gather(
            *(write(draft) for draft in drafts),
            return_exceptions=True
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.error(f"Import write failed: {failure}")
        return len(results) - len(failures), failures
