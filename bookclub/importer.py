"""Bulk import of books from the club's spreadsheet CSV export."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set, Tuple

from bookclub.dates import parse_date
from bookclub.errors import EmptyImportError
from bookclub.models import BookRecord, Status, build_catalog_links

logger = logging.getLogger(__name__)

# A comma splits only when an even number of quotes follows it
_FIELD_SPLIT = re.compile(r',(?=(?:(?:[^"]*"){2})*[^"]*$)')
_MONTH_TOKEN = re.compile(r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)", re.IGNORECASE)

_ROLE_KEYWORDS = {
    "title": ("title", "book"),
    "author": ("author",),
    "date": ("month", "read", "year"),
    "proposer": ("proposer", "host"),
    "isbn": ("isbn",),
    "comments": ("comment", "note"),
}


@dataclass
class ColumnMap:
    """Column index per semantic field; -1 when the sheet lacks it."""
    title: int = 0
    author: int = 1
    date: int = -1
    proposer: int = -1
    isbn: int = -1
    comments: int = -1


def _strip_field(value: str) -> str:
    value = value.strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value.strip()


def split_fields(line: str) -> List[str]:
    """
    Split one CSV line, keeping commas inside double-quoted fields.

    Args:
        line: Raw line without its newline

    Returns:
        Fields with enclosing quotes and whitespace removed
    """
    return [_strip_field(field) for field in _FIELD_SPLIT.split(line)]


def map_columns(headers: Iterable[str]) -> ColumnMap:
    """
    Resolve which column holds each field by header keywords.

    The first header containing a keyword wins. Title and author fall back
    to the first and second column.
    """
    lowered = [h.lower() for h in headers]
    found = {}
    for role, keywords in _ROLE_KEYWORDS.items():
        found[role] = next(
            (i for i, h in enumerate(lowered) if any(k in h for k in keywords)),
            -1,
        )

    return ColumnMap(
        title=found["title"] if found["title"] != -1 else 0,
        author=found["author"] if found["author"] != -1 else 1,
        date=found["date"],
        proposer=found["proposer"],
        isbn=found["isbn"],
        comments=found["comments"],
    )


def normalize_title(title: str) -> str:
    return title.strip().lower()


def classify_row(date_text: str, parsed: datetime, now: datetime) -> str:
    """
    Decide which list an imported row belongs to.

    Rows without a month name are ideas nobody has scheduled yet.
    """
    if not _MONTH_TOKEN.search(date_text):
        return Status.SUGGESTED
    if parsed > now:
        return Status.SCHEDULED
    return Status.READ


def _cell(cols: List[str], index: int) -> str:
    if index == -1 or index >= len(cols):
        return ""
    return cols[index]


def _line_offset(parsed: datetime, line: int) -> datetime:
    """Nudge a row's instant by one second per sheet line to keep sheet order."""
    try:
        return parsed + timedelta(milliseconds=line * 1000)
    except OverflowError:
        # Already at the end of the calendar
        return parsed


def parse_sheet(
    raw_text: str,
    existing_titles: Set[str],
    now: Optional[datetime] = None
) -> Tuple[List[BookRecord], int]:
    """
    Turn a spreadsheet export into draft records.

    Rows whose title is empty, already in the collection, or repeated
    earlier in the sheet are skipped. Each draft's sort date is offset by
    its line number in seconds so rows from the same month keep sheet order.

    Args:
        raw_text: CSV text, header on the first line
        existing_titles: Normalized titles already in the collection
        now: Reference time for scheduled/read classification

    Returns:
        (drafts, number of drafts)

    Raises:
        EmptyImportError: The text has no data rows
    """
    now = now or datetime.now(timezone.utc)
    rows = raw_text.split("\n")
    if len(rows) < 2:
        raise EmptyImportError("No data found")

    columns = map_columns(split_fields(rows[0]))
    logger.info(f"Import columns: {columns}")

    seen = set(existing_titles)
    drafts: List[BookRecord] = []

    for i, row in enumerate(rows[1:], start=1):
        cols = split_fields(row)
        if len(cols) <= max(columns.title, columns.author):
            continue

        title = cols[columns.title]
        author = cols[columns.author]
        if not title:
            continue

        normalized = normalize_title(title)
        if normalized in seen:
            logger.debug(f"Skipping duplicate title on line {i}: {title}")
            continue
        seen.add(normalized)

        month_year = _cell(cols, columns.date)
        parsed = parse_date(month_year)
        status = classify_row(month_year, parsed, now)
        authors = [author or "Unknown"]

        drafts.append(BookRecord(
            id=None,
            title=title,
            authors=authors,
            status=status,
            sort_date=_line_offset(parsed, i),
            display_date=month_year,
            proposer=_cell(cols, columns.proposer),
            comments=_cell(cols, columns.comments),
            cover_url=None,
            isbn=_cell(cols, columns.isbn) or None,
            **build_catalog_links(title, authors),
        ))

    logger.info(f"Parsed {len(drafts)} new books from {len(rows) - 1} rows")
    return drafts, len(drafts)
