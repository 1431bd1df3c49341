from __future__ import annotations

from enum import Enum


class RequestType(str, Enum):
    BORROW = "borrow"
    RETURN = "return"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


class Book:
    """A title in the inventory and how many copies are on the shelf."""

    def __init__(self, id: int, title: str, author: str, available: int = 0) -> None:
        self.id = int(id)
        self.title = title.strip()
        self.author = author.strip()
        self.available = int(available)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ID: {self.id}, available: {self.available})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "available": self.available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            available=data.get("available", 0),
        )


class Issue:
    """A copy handed out to a user. Open while ``return_date`` is None."""

    def __init__(self, id: int, username: str, book_id: int, title: str,
                 issue_date: str, return_date: str | None = None) -> None:
        self.id = int(id)
        self.username = username
        self.book_id = int(book_id)
        self.title = title
        self.issue_date = issue_date
        self.return_date = return_date

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "book_id": self.book_id,
            "title": self.title,
            "issue_date": self.issue_date,
            "return_date": self.return_date,
        }

    @staticmethod
    def from_dict(data: dict) -> "Issue":
        return Issue(
            id=data["id"],
            username=data["username"],
            book_id=data["book_id"],
            title=data.get("title", ""),
            issue_date=data["issue_date"],
            return_date=data.get("return_date"),
        )


class Request:
    """A student's borrow or return request awaiting an admin decision."""

    def __init__(self, id: int, type: RequestType | str, username: str, book_id: int,
                 title: str, requested_at: str,
                 status: RequestStatus | str = RequestStatus.PENDING,
                 resolved_at: str | None = None) -> None:
        self.id = int(id)
        self.type = RequestType(type)
        self.username = username
        self.book_id = int(book_id)
        self.title = title
        self.requested_at = requested_at
        self.status = RequestStatus(status)
        self.resolved_at = resolved_at

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "username": self.username,
            "book_id": self.book_id,
            "title": self.title,
            "requested_at": self.requested_at,
            "status": self.status.value,
            "resolved_at": self.resolved_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Request":
        return Request(
            id=data["id"],
            type=data["type"],
            username=data["username"],
            book_id=data["book_id"],
            title=data.get("title", ""),
            requested_at=data["requested_at"],
            status=data.get("status", RequestStatus.PENDING.value),
            resolved_at=data.get("resolved_at"),
        )


class CurrentUser:
    """Identity assertion handed to the core by the session layer."""

    def __init__(self, username: str, role: Role | str) -> None:
        self.username = username
        self.role = Role(role)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> dict:
        return {"username": self.username, "role": self.role.value}
