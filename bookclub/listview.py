"""Derive the displayed list from the live collection and search results."""
from typing import Dict, List, Sequence, Union

from bookclub.models import SEARCH_TAB, BookRecord, SearchResultRecord, Status


def matches_filter(book: BookRecord, filter_text: str) -> bool:
    """Case-insensitive match on title or joined author names."""
    needle = filter_text.lower()
    return needle in book.title.lower() or needle in " ".join(book.authors).lower()


def get_display_books(
    snapshot: Sequence[BookRecord],
    search_results: Sequence[SearchResultRecord],
    active_tab: str,
    filter_text: str = ""
) -> List[Union[BookRecord, SearchResultRecord]]:
    """
    Books to show for the active tab.

    The search tab shows results in API order. The list tabs show records
    with that status matching ``filter_text``, soonest first for scheduled
    books and most recent first otherwise.

    Args:
        snapshot: Current collection snapshot
        search_results: Results of the latest search
        active_tab: ``search`` or one of the statuses
        filter_text: Substring to match; empty matches everything

    Returns:
        Ordered books for display
    """
    if active_tab == SEARCH_TAB:
        return list(search_results)

    books = [
        book for book in snapshot
        if book.status == active_tab and matches_filter(book, filter_text or "")
    ]
    return sorted(
        books,
        key=lambda book: book.sort_date,
        reverse=active_tab != Status.SCHEDULED,
    )


def count_by_status(snapshot: Sequence[BookRecord]) -> Dict[str, int]:
    counts = {status: 0 for status in Status.ALL}
    for book in snapshot:
        counts[book.status] += 1
    return counts
