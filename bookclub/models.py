"""Data models for the book club lists."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import quote


class Status:
    """List a book belongs to."""
    READ = "read"
    SCHEDULED = "scheduled"
    SUGGESTED = "suggested"

    ALL = (READ, SCHEDULED, SUGGESTED)


SEARCH_TAB = "search"

GOODREADS_SEARCH_URL = "https://www.goodreads.com/search?q={}"
WCCLS_SEARCH_URL = "https://wccls.bibliocommons.com/v2/search?query={}&searchType=smart"
MULTCOLIB_SEARCH_URL = "https://multcolib.bibliocommons.com/v2/search?query={}&searchType=smart"


def _encode_component(text: str) -> str:
    # Same reserved set as JavaScript's encodeURIComponent
    return quote(text, safe="-_.!~*'()")


def build_catalog_links(title: str, authors: List[str]) -> Dict[str, str]:
    """
    Build the catalog search links for a book.

    Args:
        title: Book title
        authors: Author names, joined with spaces in the query

    Returns:
        Mapping of link field name to URL
    """
    query = _encode_component(f"{title} {' '.join(authors)}")
    return {
        "goodreads_link": GOODREADS_SEARCH_URL.format(query),
        "wccls_link": WCCLS_SEARCH_URL.format(query),
        "multcolib_link": MULTCOLIB_SEARCH_URL.format(query),
    }


def format_instant(value: datetime) -> str:
    """Render an instant as ISO-8601 UTC with millisecond precision."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass
class SearchResultRecord:
    """Book returned by an external catalog search."""
    key: str
    title: str
    authors: List[str]
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    goodreads_link: Optional[str] = None
    wccls_link: Optional[str] = None
    multcolib_link: Optional[str] = None

    @property
    def authors_str(self) -> str:
        """Format authors as comma-separated string."""
        return ", ".join(self.authors) if self.authors else "Unknown"


@dataclass
class BookRecord:
    """Book stored in one of the club's lists."""
    id: Optional[str]
    title: str
    authors: List[str]
    status: str
    sort_date: datetime
    display_date: str = ""
    proposer: str = ""
    comments: str = ""
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    goodreads_link: Optional[str] = None
    wccls_link: Optional[str] = None
    multcolib_link: Optional[str] = None

    def __post_init__(self):
        if self.status not in Status.ALL:
            raise ValueError(f"Unknown status: {self.status!r}")

    @property
    def authors_str(self) -> str:
        """Format authors as comma-separated string."""
        return ", ".join(self.authors) if self.authors else "Unknown"

    def links(self) -> Dict[str, str]:
        """Catalog links, regenerated from title and authors where missing."""
        derived = build_catalog_links(self.title, self.authors)
        return {
            "goodreads_link": self.goodreads_link or derived["goodreads_link"],
            "wccls_link": self.wccls_link or derived["wccls_link"],
            "multcolib_link": self.multcolib_link or derived["multcolib_link"],
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "status": self.status,
            "sort_date": format_instant(self.sort_date),
            "display_date": self.display_date,
            "proposer": self.proposer,
            "comments": self.comments,
            "cover_url": self.cover_url,
            "isbn": self.isbn,
            **self.links(),
        }


@dataclass
class Identity:
    """Signed-in member."""
    uid: str
    email: str
    id_token: Optional[str] = field(default=None, repr=False)


@dataclass
class EditRequest:
    """
    Field values gathered for an add or edit.

    A field left as None was declined by the member.
    """
    display_date: Optional[str] = None
    proposer: Optional[str] = None
    comments: Optional[str] = None

    @property
    def complete(self) -> bool:
        return None not in (self.display_date, self.proposer, self.comments)
