from typing import List

from circulation.database import ISSUES, UnitOfWork, next_id
from circulation.errors import NotFound
from circulation.models import Issue


class IssueLedger:
    """Who holds which book, since when, and when it came back."""

    def __init__(self, uow: UnitOfWork) -> None:
        self.uow = uow

    @property
    def _records(self) -> List[dict]:
        return self.uow.collection(ISSUES)

    def create_issue(self, username: str, book_id: int, title: str, issue_date: str) -> Issue:
        issue = Issue(
            id=next_id(self._records),
            username=username,
            book_id=book_id,
            title=title,
            issue_date=issue_date,
        )
        self._records.append(issue.to_dict())
        self.uow.touch(ISSUES)
        return issue

    def find_open_issue(self, username: str, book_id: int) -> Issue:
        for record in self._records:
            if (record["username"] == username and record["book_id"] == book_id
                    and record.get("return_date") is None):
                return Issue.from_dict(record)
        raise NotFound(f"No open issue of book {book_id} for {username}.")

    def close_issue(self, issue_id: int, return_date: str) -> Issue:
        for record in self._records:
            if record["id"] == issue_id:
                record["return_date"] = return_date
                self.uow.touch(ISSUES)
                return Issue.from_dict(record)
        raise NotFound(f"Issue {issue_id} not found.")

    def list(self) -> List[Issue]:
        return [Issue.from_dict(r) for r in self._records]

    def list_open_for_user(self, username: str) -> List[Issue]:
        return [
            Issue.from_dict(r) for r in self._records
            if r["username"] == username and r.get("return_date") is None
        ]

    def has_open_issue_for_book(self, book_id: int) -> bool:
        return any(
            r["book_id"] == book_id and r.get("return_date") is None
            for r in self._records
        )
