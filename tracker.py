#!/usr/bin/env python3
"""Book Club Tracker CLI - lists, catalog search, and spreadsheet import."""
import argparse
import asyncio
import json
import os
import sys
from tabulate import tabulate
from bookclub.app import BookClubApp
from bookclub.async_client import CURATED_LISTS, AsyncGoogleBooksClient, AsyncNYTBooksClient
from bookclub.client import SheetClient
from bookclub.config import Config
from bookclub.database import BookStore
from bookclub.models import SEARCH_TAB, BookRecord, EditRequest, Status
from bookclub.session import FirebaseAuthClient, SessionGate
from bookclub.sync import CollectionSync
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def setup_store(config: Config) -> BookStore:
    """Initialize database."""
    store = BookStore(config.DATABASE_URL)
    store.init_schema()
    return store


def build_app(config: Config, store: BookStore) -> BookClubApp:
    """Wire the services around one application state."""
    session = SessionGate(
        FirebaseAuthClient(config.FIREBASE_API_KEY, timeout=config.DEFAULT_TIMEOUT),
        admin_emails=config.ADMIN_EMAILS
    )
    return BookClubApp(
        sync=CollectionSync(store, session, max_concurrent=store.max_conn),
        session=session,
        catalog=AsyncGoogleBooksClient(
            api_key=config.GOOGLE_BOOKS_API_KEY,
            timeout=config.SEARCH_TIMEOUT,
            max_results=config.SEARCH_MAX_RESULTS
        ),
        bestsellers=AsyncNYTBooksClient(config.NYT_API_KEY, timeout=config.SEARCH_TIMEOUT),
        sheet_client=SheetClient(
            timeout=config.DEFAULT_TIMEOUT,
            max_retries=config.DEFAULT_MAX_RETRIES
        ),
        sheet_url=config.SHEET_CSV_URL
    )


def display_books(books, format_type: str):
    """Display books in specified format."""
    if format_type == "table":
        headers = ["#", "Title", "Authors", "Date", "Proposer", "ID / ISBN"]
        rows = [
            [
                i,
                book.title[:50] + "..." if len(book.title) > 50 else book.title,
                book.authors_str[:30] + "..." if len(book.authors_str) > 30 else book.authors_str,
                getattr(book, "display_date", ""),
                getattr(book, "proposer", ""),
                book.id if isinstance(book, BookRecord) else (book.isbn or "")
            ]
            for i, book in enumerate(books, 1)
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        data = [
            book.to_dict() if isinstance(book, BookRecord) else vars(book)
            for book in books
        ]
        print(json.dumps(data, indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            print(f"{i}. {book.title} - {book.authors_str}")


async def sign_in_if_requested(app: BookClubApp, args) -> bool:
    email = args.email or os.getenv("BOOKCLUB_EMAIL")
    password = args.password or os.getenv("BOOKCLUB_PASSWORD")
    if not email or not password:
        return False
    return await app.sign_in(email, password)


async def run_command(app: BookClubApp, args):
    """Run one subcommand against a started app."""
    state = app.state

    if args.command == "list":
        app.set_tab(args.tab)
        app.set_filter(args.filter)
        counts = state.counts()
        print(" | ".join(f"{status}: {counts[status]}" for status in Status.ALL))
        display_books(state.display_books(), args.format)

    elif args.command == "search":
        await app.search(args.query)
        display_books(state.display_books(), args.format)

    elif args.command == "bestsellers":
        await app.browse_list(args.list)
        if state.active_tab == SEARCH_TAB:
            display_books(state.display_books(), args.format)

    elif args.command == "add":
        results = await app.search(args.query)
        if not 1 <= args.pick <= len(results):
            logger.error(f"No search result #{args.pick} for: {args.query}")
            return
        details = EditRequest(
            display_date=args.date,
            proposer=args.proposer,
            comments=args.comments
        )
        book_id = await app.add_book(results[args.pick - 1], args.status, details)
        if book_id:
            print(f"Added as {book_id}")

    elif args.command == "edit":
        current = app.sync.find(args.id)
        if current is None:
            logger.error(f"No book with id {args.id}")
            return
        # Options left out keep their current value
        edit = EditRequest(
            display_date=current.display_date if args.date is None else args.date,
            proposer=current.proposer if args.proposer is None else args.proposer,
            comments=current.comments if args.comments is None else args.comments
        )
        if await app.edit_book(args.id, edit):
            print(f"Updated {args.id}")
        else:
            logger.warning("Nothing was updated (admins only)")

    elif args.command == "remove":
        if await app.remove_book(args.id):
            print(f"Deleted {args.id}")
        else:
            logger.warning("Nothing was deleted (admins only)")

    elif args.command == "import":
        raw_text = None
        if args.file:
            with open(args.file, encoding="utf-8") as f:
                raw_text = f.read()
        if not app.is_admin:
            logger.warning("Only admins can import books")
            return
        await app.import_sheet(raw_text)

    if state.message:
        print(state.message)


async def main_async(args, config: Config):
    store = setup_store(config)
    app = build_app(config, store)

    try:
        await app.start()
        await sign_in_if_requested(app, args)
        await run_command(app, args)
    finally:
        await app.stop()
        store.close()


def show_stats(config: Config):
    """Show how many books each list holds."""
    store = setup_store(config)

    try:
        stats = store.get_stats()

        print("\n" + "=" * 50)
        print("BOOK CLUB STATISTICS")
        print("=" * 50)
        print(f"Books read:      {stats['read']}")
        print(f"Books scheduled: {stats['scheduled']}")
        print(f"Books suggested: {stats['suggested']}")
        print(f"Total:           {stats['total']}")
        print("=" * 50 + "\n")

    finally:
        store.close()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Book Club Tracker - read, scheduled, and suggested books",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show what we've read, filtered
  %(prog)s list --tab read --filter tartt

  # Search the catalog
  %(prog)s search "project hail mary"

  # Suggest the first result (any member)
  %(prog)s --email me@example.com --password ... add "project hail mary" --pick 1

  # Import new rows from the club spreadsheet (admins)
  %(prog)s import
        """
    )
    parser.add_argument("--email", help="Member email (default: $BOOKCLUB_EMAIL)")
    parser.add_argument("--password", help="Member password (default: $BOOKCLUB_PASSWORD)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    formats = ["table", "json", "compact"]

    # List command
    list_parser = subparsers.add_parser("list", help="Show one of the club's lists")
    list_parser.add_argument("--tab", choices=list(Status.ALL), default=Status.READ, help="List to show")
    list_parser.add_argument("--filter", default="", help="Match title or author")
    list_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search Google Books")
    search_parser.add_argument("query", help="Search query, e.g. 'subject:mystery'")
    search_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Bestsellers command
    nyt_parser = subparsers.add_parser("bestsellers", help="Browse an NYT bestseller list")
    nyt_parser.add_argument("list", choices=list(CURATED_LISTS), help="NYT list name")
    nyt_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Add command
    add_parser = subparsers.add_parser("add", help="Add a search result to a list")
    add_parser.add_argument("query", help="Search query")
    add_parser.add_argument("--pick", type=int, default=1, help="Result number (default: 1)")
    add_parser.add_argument("--status", choices=list(Status.ALL), default=Status.SUGGESTED, help="Target list")
    add_parser.add_argument("--date", help="Month/Year, e.g. 'January 2025'")
    add_parser.add_argument("--proposer", help="Who proposed the book")
    add_parser.add_argument("--comments", help="Comments")

    # Edit command
    edit_parser = subparsers.add_parser("edit", help="Edit date, proposer, or comments (admins)")
    edit_parser.add_argument("id", help="Book ID")
    edit_parser.add_argument("--date", help="Month/Year")
    edit_parser.add_argument("--proposer", help="Proposer")
    edit_parser.add_argument("--comments", help="Comments")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Delete a book (admins)")
    remove_parser.add_argument("id", help="Book ID")

    # Import command
    import_parser = subparsers.add_parser("import", help="Import new books from the spreadsheet (admins)")
    import_parser.add_argument("--file", help="Read CSV from a file instead of SHEET_CSV_URL")

    # Stats command
    subparsers.add_parser("stats", help="Show list sizes")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()

    try:
        if args.command == "stats":
            show_stats(config)
        else:
            asyncio.run(main_async(args, config))

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
