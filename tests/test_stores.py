import pytest

from circulation.database import BOOKS, ISSUES, REQUESTS, MemoryDatabase, UnitOfWork, next_id
from circulation.errors import (
    Conflict,
    DuplicateRequest,
    InsufficientCopies,
    NotFound,
    RequestNotPending,
    ValidationError,
)
from circulation.inventory import InventoryStore
from circulation.ledger import IssueLedger
from circulation.models import RequestStatus, RequestType
from circulation.requests_queue import RequestQueue


@pytest.fixture
def uow():
    return UnitOfWork(MemoryDatabase())


@pytest.fixture
def ledger(uow):
    return IssueLedger(uow)


@pytest.fixture
def inventory(uow, ledger):
    return InventoryStore(uow, ledger)


@pytest.fixture
def queue(uow):
    return RequestQueue(uow, clock=lambda: "2024-05-01T10:00:00+00:00")


def test_next_id():
    assert next_id([]) == 1
    assert next_id([{"id": 3}, {"id": 7}, {"id": 5}]) == 8


def test_inventory_create_assigns_sequential_ids(inventory):
    first = inventory.create("Clean Code", "Robert C. Martin", 3)
    second = inventory.create("Atomic Habits", "James Clear", 0)
    assert (first.id, second.id) == (1, 2)
    assert [b.available for b in inventory.list()] == [3, 0]


def test_inventory_create_rejects_negative_count(inventory):
    with pytest.raises(ValidationError):
        inventory.create("Title", "Author", -1)


def test_inventory_adjust_available(inventory):
    book = inventory.create("Clean Code", "Robert C. Martin", 1)

    assert inventory.adjust_available(book.id, -1).available == 0
    with pytest.raises(InsufficientCopies):
        inventory.adjust_available(book.id, -1)
    assert inventory.get(book.id).available == 0
    assert inventory.adjust_available(book.id, 2).available == 2


def test_inventory_unknown_book(inventory):
    with pytest.raises(NotFound):
        inventory.get(5)
    with pytest.raises(NotFound):
        inventory.adjust_available(5, 1)
    with pytest.raises(NotFound):
        inventory.delete(5)


def test_inventory_delete_checks_ledger(inventory, ledger):
    book = inventory.create("Clean Code", "Robert C. Martin", 1)
    issue = ledger.create_issue("alice", book.id, book.title, "2024-05-01")

    with pytest.raises(Conflict):
        inventory.delete(book.id)

    ledger.close_issue(issue.id, "2024-05-10")
    inventory.delete(book.id)
    assert inventory.list() == []


def test_ledger_open_and_close(ledger):
    issue = ledger.create_issue("alice", 1, "Clean Code", "2024-05-01")
    ledger.create_issue("bob", 1, "Clean Code", "2024-05-02")

    assert ledger.find_open_issue("alice", 1).id == issue.id
    assert ledger.has_open_issue_for_book(1)
    assert [i.username for i in ledger.list_open_for_user("alice")] == ["alice"]

    closed = ledger.close_issue(issue.id, "2024-05-09")
    assert closed.return_date == "2024-05-09"
    assert not closed.is_open
    with pytest.raises(NotFound):
        ledger.find_open_issue("alice", 1)
    assert ledger.list_open_for_user("alice") == []
    assert ledger.has_open_issue_for_book(1)
    assert not ledger.has_open_issue_for_book(2)


def test_ledger_close_unknown_issue(ledger):
    with pytest.raises(NotFound):
        ledger.close_issue(9, "2024-05-09")


def test_queue_submit_and_duplicates(queue):
    request = queue.submit(RequestType.BORROW, "alice", 1, "Clean Code")

    assert request.status is RequestStatus.PENDING
    assert request.requested_at == "2024-05-01T10:00:00+00:00"
    with pytest.raises(DuplicateRequest):
        queue.submit(RequestType.BORROW, "alice", 1, "Clean Code")
    # Same user and book but a different type is allowed
    queue.submit(RequestType.RETURN, "alice", 1, "Clean Code")
    assert len(queue.list_pending()) == 2


def test_queue_resolve_once(queue):
    request = queue.submit(RequestType.BORROW, "alice", 1, "Clean Code")

    resolved = queue.resolve(request.id, RequestStatus.REJECTED)
    assert resolved.status is RequestStatus.REJECTED
    assert resolved.resolved_at is not None

    with pytest.raises(RequestNotPending):
        queue.resolve(request.id, RequestStatus.APPROVED)
    with pytest.raises(RequestNotPending):
        queue.find_pending(request.id)
    assert queue.list_pending() == []


def test_queue_resolve_requires_terminal_outcome(queue):
    request = queue.submit(RequestType.BORROW, "alice", 1, "Clean Code")
    with pytest.raises(ValidationError):
        queue.resolve(request.id, RequestStatus.PENDING)


def test_queue_unknown_request(queue):
    with pytest.raises(NotFound):
        queue.find_pending(3)
    with pytest.raises(NotFound):
        queue.resolve(3, RequestStatus.APPROVED)


def test_queue_pending_for_user(queue):
    queue.submit(RequestType.BORROW, "alice", 1, "Clean Code")
    queue.submit(RequestType.BORROW, "bob", 1, "Clean Code")
    queue.submit(RequestType.BORROW, "alice", 2, "Atomic Habits")

    assert [r.book_id for r in queue.list_pending_for_user("alice")] == [1, 2]


def test_unit_of_work_writes_only_on_commit():
    db = MemoryDatabase()
    uow = UnitOfWork(db)
    ledger = IssueLedger(uow)
    InventoryStore(uow, ledger).create("Clean Code", "Robert C. Martin", 1)

    assert db.load(BOOKS) == []
    uow.commit()
    assert [r["title"] for r in db.load(BOOKS)] == ["Clean Code"]
    # Collections that were only read are not written back
    assert db.load(ISSUES) == []
    assert db.load(REQUESTS) == []
    assert not uow.dirty
