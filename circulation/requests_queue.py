from typing import Callable, List

from circulation.database import REQUESTS, UnitOfWork, next_id
from circulation.errors import DuplicateRequest, NotFound, RequestNotPending, ValidationError
from circulation.models import Request, RequestStatus, RequestType


class RequestQueue:
    """Borrow and return requests and their pending -> resolved lifecycle."""

    def __init__(self, uow: UnitOfWork, clock: Callable[[], str]) -> None:
        self.uow = uow
        self.clock = clock

    @property
    def _records(self) -> List[dict]:
        return self.uow.collection(REQUESTS)

    def _pending_records(self) -> List[dict]:
        return [r for r in self._records if r["status"] == RequestStatus.PENDING.value]

    def has_pending(self, request_type: RequestType, username: str, book_id: int) -> bool:
        return any(
            r["type"] == request_type.value and r["username"] == username and r["book_id"] == book_id
            for r in self._pending_records()
        )

    def submit(self, request_type: RequestType, username: str, book_id: int, title: str) -> Request:
        if self.has_pending(request_type, username, book_id):
            raise DuplicateRequest(
                f"{username} already has a pending {request_type.value} request for book {book_id}."
            )
        request = Request(
            id=next_id(self._records),
            type=request_type,
            username=username,
            book_id=book_id,
            title=title,
            requested_at=self.clock(),
        )
        self._records.append(request.to_dict())
        self.uow.touch(REQUESTS)
        return request

    def list_pending(self) -> List[Request]:
        # ISO-8601 timestamps sort chronologically; id breaks ties
        records = sorted(self._pending_records(), key=lambda r: (r["requested_at"], r["id"]))
        return [Request.from_dict(r) for r in records]

    def list_pending_for_user(self, username: str) -> List[Request]:
        return [r for r in self.list_pending() if r.username == username]

    def _find_record(self, request_id: int) -> dict:
        for record in self._records:
            if record["id"] == request_id:
                return record
        raise NotFound(f"Request {request_id} not found.")

    def find_pending(self, request_id: int) -> Request:
        record = self._find_record(request_id)
        if record["status"] != RequestStatus.PENDING.value:
            raise RequestNotPending(f"Request {request_id} is already {record['status']}.")
        return Request.from_dict(record)

    def resolve(self, request_id: int, outcome: RequestStatus) -> Request:
        if outcome is RequestStatus.PENDING:
            raise ValidationError("A request can only be resolved as approved or rejected.")
        record = self._find_record(request_id)
        if record["status"] != RequestStatus.PENDING.value:
            raise RequestNotPending(f"Request {request_id} is already {record['status']}.")
        record["status"] = outcome.value
        record["resolved_at"] = self.clock()
        self.uow.touch(REQUESTS)
        return Request.from_dict(record)
