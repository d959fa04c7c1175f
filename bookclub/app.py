"""Application state and the actions members take on it."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from bookclub.async_client import NYT_KEY_MISSING, AsyncGoogleBooksClient, AsyncNYTBooksClient
from bookclub.client import SheetClient
from bookclub.errors import (
    AuthorizationError,
    BookClubError,
    ConfigurationError,
    RateLimited,
    SearchTimeout,
)
from bookclub.importer import normalize_title, parse_sheet
from bookclub.listview import count_by_status, get_display_books
from bookclub.models import (
    SEARCH_TAB,
    BookRecord,
    EditRequest,
    Identity,
    SearchResultRecord,
    Status,
)
from bookclub.session import SessionGate
from bookclub.sync import CollectionSync

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the presentation layer reads."""
    books: List[BookRecord] = field(default_factory=list)
    search_results: List[SearchResultRecord] = field(default_factory=list)
    active_tab: str = Status.READ
    filter_text: str = ""
    identity: Optional[Identity] = None
    loading: bool = False
    message: Optional[str] = None

    def display_books(self) -> List[Union[BookRecord, SearchResultRecord]]:
        return get_display_books(self.books, self.search_results, self.active_tab, self.filter_text)

    def counts(self) -> Dict[str, int]:
        return count_by_status(self.books)


class BookClubApp:
    """
    Owns the application state and routes member actions to the services.

    Every action reports problems through ``state.message`` instead of
    raising, so a failed search or write never takes the app down.
    """

    def __init__(
        self,
        sync: CollectionSync,
        session: SessionGate,
        catalog: AsyncGoogleBooksClient,
        bestsellers: AsyncNYTBooksClient,
        sheet_client: Optional[SheetClient] = None,
        sheet_url: str = ""
    ):
        self.state = AppState()
        self.sync = sync
        self.session = session
        self.catalog = catalog
        self.bestsellers = bestsellers
        self.sheet_client = sheet_client
        self.sheet_url = sheet_url
        self._search_generation = 0
        self._unsubscribe_identity = None

        self.sync.on_snapshot(self._on_snapshot)

    def _on_snapshot(self, books: List[BookRecord]):
        self.state.books = books

    def _on_identity(self, identity: Optional[Identity]):
        self.state.identity = identity

    def _notify(self, message: str):
        logger.info(message)
        self.state.message = message

    @property
    def is_admin(self) -> bool:
        return self.session.is_admin(self.state.identity)

    async def start(self):
        self._unsubscribe_identity = self.session.subscribe(self._on_identity)
        self.sync.start()
        await self.sync.wait_ready()

    async def stop(self):
        if self._unsubscribe_identity:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        await self.sync.stop()
        await self.catalog.close()
        await self.bestsellers.close()
        await self.session.close()
        if self.sheet_client:
            self.sheet_client.close()

    def set_tab(self, tab: str):
        if tab != SEARCH_TAB and tab not in Status.ALL:
            raise ValueError(f"Unknown tab: {tab!r}")
        self.state.active_tab = tab

    def set_filter(self, text: str):
        self.state.filter_text = text or ""

    async def sign_in(self, email: str, password: str) -> bool:
        ok, message = await self.session.sign_in(email, password)
        self._notify(message)
        return ok

    async def sign_out(self):
        await self.session.sign_out()

    async def _load_results(self, fetch, failure_prefix: str) -> List[SearchResultRecord]:
        self._search_generation += 1
        generation = self._search_generation
        self.state.loading = True
        self.state.active_tab = SEARCH_TAB
        self.state.search_results = []

        try:
            results = await fetch()
        except (SearchTimeout, RateLimited, ConfigurationError) as e:
            results = []
            if generation == self._search_generation:
                self._notify(str(e))
        except BookClubError as e:
            results = []
            if generation == self._search_generation:
                self._notify(f"{failure_prefix}: {e}")
        finally:
            # A newer search owns the results tab now
            if generation == self._search_generation:
                self.state.loading = False

        if generation == self._search_generation:
            self.state.search_results = results
        return results

    async def search(self, query: str) -> List[SearchResultRecord]:
        """Search the catalog and show the results."""
        if not query or not query.strip():
            return []
        return await self._load_results(
            lambda: self.catalog.search(query),
            "Failed to search books",
        )

    async def quick_search(self, term: str) -> List[SearchResultRecord]:
        return await self.search(term)

    async def browse_list(self, list_id: str) -> List[SearchResultRecord]:
        """Show a bestseller list in the results tab."""
        if not self.bestsellers.configured:
            # Nothing is fetched, so the current view stays as it is
            self._notify(NYT_KEY_MISSING)
            return []
        return await self._load_results(
            lambda: self.bestsellers.fetch_curated_list(list_id),
            "Failed to fetch NYT Bestsellers",
        )

    async def add_book(
        self,
        book: SearchResultRecord,
        status: str = Status.SUGGESTED,
        details: Optional[EditRequest] = None
    ) -> Optional[str]:
        """Add a search result to a list. Returns the new id, or None."""
        try:
            book_id = await self.sync.add(book, status, details)
        except AuthorizationError as e:
            self._notify(str(e))
            return None
        except BookClubError as e:
            logger.error(f"Error adding book: {e}")
            self._notify("Error adding book.")
            return None

        self._notify("Book added!")
        self.state.active_tab = status
        return book_id

    async def edit_book(self, book_id: str, edit: EditRequest) -> bool:
        try:
            return await self.sync.update(book_id, edit)
        except BookClubError as e:
            logger.error(f"Error updating book: {e}")
            self._notify("Error updating book.")
            return False

    async def remove_book(self, book_id: str) -> bool:
        try:
            return await self.sync.remove(book_id)
        except BookClubError as e:
            logger.error(f"Error deleting book: {e}")
            self._notify("Error deleting book.")
            return False

    async def import_sheet(self, raw_text: Optional[str] = None) -> int:
        """
        Import new books from the club spreadsheet.

        Args:
            raw_text: CSV text; fetched from the configured sheet when omitted

        Returns:
            Number of books written
        """
        if not self.is_admin:
            return 0

        self.state.loading = True
        try:
            if raw_text is None:
                raw_text = await self._fetch_sheet()

            existing = {normalize_title(book.title) for book in self.state.books}
            drafts, count = parse_sheet(raw_text, existing)
            written, failures = await self.sync.bulk_add(drafts)
        except BookClubError as e:
            logger.error(f"Migration failed: {e}")
            self._notify(f"Migration failed: {e}")
            return 0
        finally:
            self.state.loading = False

        if failures:
            self._notify(f"Imported {written} of {count} new books; {len(failures)} failed.")
        elif written > 0:
            self._notify(f"Successfully imported {written} new books!")
        else:
            self._notify("No new books found to import.")
        return written

    async def _fetch_sheet(self) -> str:
        if not self.sheet_client or not self.sheet_url:
            raise ConfigurationError("No spreadsheet configured (SHEET_CSV_URL).")
        text = await asyncio.to_thread(self.sheet_client.fetch_csv, self.sheet_url)
        if text is None:
            raise BookClubError("Could not download the spreadsheet.")
        return text
