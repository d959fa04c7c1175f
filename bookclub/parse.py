"""Parse and normalize catalog API responses into search results."""
import logging
from typing import Dict, Any, List, Optional
from bookclub.models import SearchResultRecord, build_catalog_links

logger = logging.getLogger(__name__)

OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/isbn/{}-M.jpg"


def _pick_isbn(identifiers: List[Dict[str, Any]]) -> Optional[str]:
    """Prefer the 13-digit ISBN over the 10-digit one."""
    for wanted in ("ISBN_13", "ISBN_10"):
        for identifier in identifiers:
            if identifier.get("type") == wanted and identifier.get("identifier"):
                return identifier["identifier"]
    return None


def _secure(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return url.replace("http:", "https:", 1)


def parse_volume(item: Dict[str, Any]) -> Optional[SearchResultRecord]:
    """
    Parse a single volume from the Google Books API.

    Args:
        item: Single item from the ``items`` array

    Returns:
        SearchResultRecord or None if the item has no title
    """
    volume_info = item.get("volumeInfo") or {}
    title = volume_info.get("title")
    if not title:
        logger.warning(f"Skipping volume without title: {item.get('id')}")
        return None

    authors = volume_info.get("authors") or ["Unknown"]
    image_links = volume_info.get("imageLinks") or {}

    return SearchResultRecord(
        key=item.get("id") or title,
        title=title,
        authors=authors,
        cover_url=_secure(image_links.get("thumbnail")),
        isbn=_pick_isbn(volume_info.get("industryIdentifiers") or []),
        **build_catalog_links(title, authors),
    )


def parse_volumes_response(response_json: Dict[str, Any]) -> List[SearchResultRecord]:
    """
    Parse full Google Books API response.

    Args:
        response_json: Complete API response JSON

    Returns:
        List of results in API order (empty if no items found)
    """
    results = []
    for item in response_json.get("items") or []:
        record = parse_volume(item)
        if record:
            results.append(record)
    return results


def parse_list_entry(entry: Dict[str, Any]) -> Optional[SearchResultRecord]:
    """Parse one book from an NYT bestseller list."""
    title = entry.get("title")
    if not title:
        return None

    author = entry.get("author") or "Unknown"
    isbn13 = entry.get("primary_isbn13")
    cover_url = entry.get("book_image")
    if not cover_url and isbn13:
        cover_url = OPEN_LIBRARY_COVER_URL.format(isbn13)

    return SearchResultRecord(
        key=isbn13 or entry.get("primary_isbn10") or title,
        title=title,
        authors=[author],
        cover_url=cover_url,
        isbn=isbn13,
        **build_catalog_links(title, [author]),
    )


def parse_list_response(response_json: Dict[str, Any]) -> List[SearchResultRecord]:
    """Parse an NYT ``lists/current`` response."""
    listing = response_json.get("results")
    if not isinstance(listing, dict):
        return []
    books = listing.get("books") or []
    results = []
    for entry in books:
        record = parse_list_entry(entry)
        if record:
            results.append(record)
    return results
