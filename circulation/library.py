import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, NamedTuple, Optional, Tuple

from circulation.auth import UserDirectory
from circulation.database import Database, UnitOfWork, initialize_database
from circulation.errors import (
    DuplicateRequest,
    InconsistentState,
    InsufficientCopies,
    NoActiveIssue,
    NotFound,
)
from circulation.inventory import InventoryStore
from circulation.ledger import IssueLedger
from circulation.models import Book, Issue, Request, RequestStatus, RequestType
from circulation.requests_queue import RequestQueue
from circulation.validators import RecordValidator, TextValidator

logger = logging.getLogger(__name__)

DEMO_BOOKS = [
    ("Clean Code", "Robert C. Martin", 3),
    ("Atomic Habits", "James Clear", 2),
    ("The Pragmatic Programmer", "Andrew Hunt", 1),
]


class Stores(NamedTuple):
    inventory: InventoryStore
    ledger: IssueLedger
    queue: RequestQueue


class Library:
    """Borrow/return workflow over the inventory, the issue ledger and the request queue.

    Every mutating operation runs under one lock: it loads the collections it
    needs, validates, mutates working copies and commits all touched
    collections in a single write. A failure anywhere before the write leaves
    the database untouched.
    """

    def __init__(self, database: Optional[Database] = None,
                 clock: Optional[Callable[[], datetime]] = None) -> None:
        self.database = database if database is not None else initialize_database()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()

    # ------------------------- Unit of work ------------------------- #
    def _now(self) -> str:
        return self._clock().isoformat()

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def _open(self, uow: UnitOfWork) -> Stores:
        ledger = IssueLedger(uow)
        return Stores(
            inventory=InventoryStore(uow, ledger),
            ledger=ledger,
            queue=RequestQueue(uow, self._now),
        )

    @staticmethod
    def _holds(stores: Stores, username: str, book_id: int) -> bool:
        return any(i.book_id == book_id for i in stores.ledger.list_open_for_user(username))

    @contextmanager
    def _snapshot(self) -> Iterator[Stores]:
        """Read-only view; never written back."""
        yield self._open(UnitOfWork(self.database))

    @contextmanager
    def _transaction(self) -> Iterator[Stores]:
        # The thread lock orders writers in this process; the database
        # transaction orders them against other processes on the same store.
        with self._lock, self.database.transaction():
            uow = UnitOfWork(self.database)
            yield self._open(uow)
            uow.commit()

    # ------------------------- Inventory ------------------------- #
    def list_books(self) -> List[Book]:
        with self._snapshot() as stores:
            return stores.inventory.list()

    def get_book(self, book_id: int) -> Book:
        with self._snapshot() as stores:
            return stores.inventory.get(RecordValidator.validate_id(book_id, "bookId"))

    def create_book(self, title: str, author: str, count: int) -> Book:
        title = TextValidator.validate_title(title)
        author = TextValidator.validate_author(author)
        count = RecordValidator.validate_count(count)
        with self._transaction() as stores:
            book = stores.inventory.create(title, author, count)
        logger.info(f"Book created: id={book.id} title={book.title!r} available={book.available}")
        return book

    def delete_book(self, book_id: int) -> Book:
        book_id = RecordValidator.validate_id(book_id, "bookId")
        with self._transaction() as stores:
            book = stores.inventory.get(book_id)
            stores.inventory.delete(book_id)
        logger.info(f"Book deleted: id={book.id} title={book.title!r}")
        return book

    def seed_if_empty(self) -> List[Book]:
        """Create the demo catalogue on a store that has no books yet."""
        with self._transaction() as stores:
            if stores.inventory.list():
                return []
            created = [stores.inventory.create(t, a, n) for t, a, n in DEMO_BOOKS]
        logger.info(f"Seeded {len(created)} demo books")
        return created

    # ------------------------- Student actions ------------------------- #
    def submit_borrow(self, username: str, book_id: int) -> Request:
        username = RecordValidator.validate_username(username)
        book_id = RecordValidator.validate_id(book_id, "bookId")
        with self._transaction() as stores:
            book = stores.inventory.get(book_id)
            # Advisory only: approval re-checks availability
            if book.available < 1:
                raise InsufficientCopies("No copies available")
            if self._holds(stores, username, book.id):
                raise DuplicateRequest(f"{username} already holds a copy of book {book.id}.")
            request = stores.queue.submit(RequestType.BORROW, username, book.id, book.title)
        logger.info(f"Borrow request {request.id} submitted by {username} for book {book_id}")
        return request

    def submit_return(self, username: str, book_id: int) -> Request:
        username = RecordValidator.validate_username(username)
        book_id = RecordValidator.validate_id(book_id, "bookId")
        with self._transaction() as stores:
            try:
                issue = stores.ledger.find_open_issue(username, book_id)
            except NotFound:
                raise NoActiveIssue("No active issue for this book") from None
            request = stores.queue.submit(RequestType.RETURN, username, book_id, issue.title)
        logger.info(f"Return request {request.id} submitted by {username} for book {book_id}")
        return request

    def list_open_issues_for_user(self, username: str) -> List[Issue]:
        with self._snapshot() as stores:
            return stores.ledger.list_open_for_user(username)

    def list_pending_for_user(self, username: str) -> List[Request]:
        with self._snapshot() as stores:
            return stores.queue.list_pending_for_user(username)

    # ------------------------- Admin actions ------------------------- #
    def list_pending(self) -> List[Request]:
        with self._snapshot() as stores:
            return stores.queue.list_pending()

    def list_issued(self) -> List[Issue]:
        with self._snapshot() as stores:
            return stores.ledger.list()

    def approve(self, request_id: int) -> Request:
        request_id = RecordValidator.validate_id(request_id, "requestId")
        with self._transaction() as stores:
            request = stores.queue.find_pending(request_id)
            if request.type is RequestType.BORROW:
                self._approve_borrow(stores, request)
            else:
                self._approve_return(stores, request)
            approved = stores.queue.resolve(request_id, RequestStatus.APPROVED)
        logger.info(
            f"Request {approved.id} approved: {approved.type.value} of book {approved.book_id} "
            f"by {approved.username}"
        )
        return approved

    def _approve_borrow(self, stores: Stores, request: Request) -> None:
        try:
            book = stores.inventory.get(request.book_id)
        except NotFound:
            raise NotFound(f"Book {request.book_id} no longer exists; reject request {request.id}.") from None
        if book.available < 1:
            # Left pending: the admin may retry once a copy comes back, or reject
            logger.warning(f"Request {request.id} not approved: book {book.id} has no copies available")
            raise InsufficientCopies("Book not available")
        if self._holds(stores, request.username, book.id):
            logger.error(f"Request {request.id}: {request.username} already holds book {book.id}")
            raise InconsistentState(f"{request.username} already has an open issue for book {book.id}")
        stores.inventory.adjust_available(book.id, -1)
        stores.ledger.create_issue(request.username, book.id, book.title, self._today())

    def _approve_return(self, stores: Stores, request: Request) -> None:
        try:
            issue = stores.ledger.find_open_issue(request.username, request.book_id)
        except NotFound:
            logger.error(
                f"Request {request.id}: no open issue of book {request.book_id} for {request.username}"
            )
            raise InconsistentState("No open issue found") from None
        try:
            stores.inventory.adjust_available(request.book_id, +1)
        except NotFound:
            logger.error(f"Request {request.id}: book {request.book_id} vanished while issued")
            raise InconsistentState(f"Book {request.book_id} is issued but missing from inventory") from None
        stores.ledger.close_issue(issue.id, self._today())

    def reject(self, request_id: int) -> Request:
        request_id = RecordValidator.validate_id(request_id, "requestId")
        with self._transaction() as stores:
            rejected = stores.queue.resolve(request_id, RequestStatus.REJECTED)
        logger.info(f"Request {rejected.id} rejected")
        return rejected

    def close(self) -> None:
        self.database.close()


def seed_defaults(library: Library, users: UserDirectory) -> Tuple[int, int]:
    """Demo catalogue and accounts for a fresh install.

    Each part is skipped when its store already has data. Returns the number
    of books and users created.
    """
    return len(library.seed_if_empty()), users.seed_if_empty()
