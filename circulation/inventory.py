from typing import List

from circulation.database import BOOKS, UnitOfWork, next_id
from circulation.errors import Conflict, InsufficientCopies, NotFound, ValidationError
from circulation.ledger import IssueLedger
from circulation.models import Book


class InventoryStore:
    """Book records and their available-copy counters."""

    def __init__(self, uow: UnitOfWork, ledger: IssueLedger) -> None:
        self.uow = uow
        self.ledger = ledger

    @property
    def _records(self) -> List[dict]:
        return self.uow.collection(BOOKS)

    def _find_record(self, book_id: int) -> dict:
        for record in self._records:
            if record["id"] == book_id:
                return record
        raise NotFound(f"Book {book_id} not found.")

    def create(self, title: str, author: str, initial_count: int) -> Book:
        if initial_count < 0:
            raise ValidationError("Initial copy count cannot be negative.")
        book = Book(id=next_id(self._records), title=title, author=author, available=initial_count)
        self._records.append(book.to_dict())
        self.uow.touch(BOOKS)
        return book

    def list(self) -> List[Book]:
        return [Book.from_dict(r) for r in self._records]

    def get(self, book_id: int) -> Book:
        return Book.from_dict(self._find_record(book_id))

    def adjust_available(self, book_id: int, delta: int) -> Book:
        record = self._find_record(book_id)
        new_count = record["available"] + delta
        if new_count < 0:
            raise InsufficientCopies(
                f"Book {book_id} has {record['available']} copies available, cannot take {-delta}."
            )
        record["available"] = new_count
        self.uow.touch(BOOKS)
        return Book.from_dict(record)

    def delete(self, book_id: int) -> None:
        record = self._find_record(book_id)
        if self.ledger.has_open_issue_for_book(book_id):
            raise Conflict(f"Cannot delete book {book_id}: it has active issues.")
        self._records.remove(record)
        self.uow.touch(BOOKS)
