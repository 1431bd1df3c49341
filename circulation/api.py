import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field

from circulation.auth import UserDirectory
from circulation.config import settings
from circulation.database import initialize_database
from circulation.errors import (
    AuthenticationError,
    CirculationError,
    Conflict,
    InconsistentState,
    InsufficientCopies,
    NoActiveIssue,
    NotFound,
    PersistenceError,
    ValidationError,
)
from circulation.library import Library, seed_defaults
from circulation.models import CurrentUser, Role

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Tests point LIBRARY_DB_FILE at a temp file and reload this module
database = initialize_database(os.environ.get("LIBRARY_DB_FILE") or settings.database_file)
library = Library(database)
users = UserDirectory(database)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_demo_data:
        seed_defaults(library, users)
    yield
    library.close()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- Error mapping ---
# Most specific first; RequestNotPending and DuplicateRequest ride on their parents
_STATUS_BY_ERROR = [
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (InsufficientCopies, status.HTTP_409_CONFLICT),
    (NoActiveIssue, status.HTTP_400_BAD_REQUEST),
    (ValidationError, 422),
    (InconsistentState, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(error: CirculationError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=code, content=exc.to_dict())


# --- Security ---
security = HTTPBasic()


def get_current_user(credentials: HTTPBasicCredentials = Depends(security)) -> CurrentUser:
    """Resolve HTTP Basic credentials to the caller's identity."""
    try:
        return users.authenticate(credentials.username, credentials.password)
    except AuthenticationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


def require_role(role: Role):
    def dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role is not role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return current_user
    return dependency


require_admin = require_role(Role.ADMIN)
require_student = require_role(Role.STUDENT)


# --- Models ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    available: int


class BookCreateModel(BaseModel):
    title: str
    author: str
    available: int = Field(settings.default_book_copies, ge=0)


class IssueModel(BaseModel):
    id: int
    username: str
    book_id: int
    title: str
    issue_date: str
    return_date: Optional[str] = None


class RequestModel(BaseModel):
    id: int
    type: str
    username: str
    book_id: int
    title: str
    requested_at: str
    status: str
    resolved_at: Optional[str] = None


class BookActionModel(BaseModel):
    book_id: int = Field(..., ge=1)


class ResolveModel(BaseModel):
    request_id: int = Field(..., ge=1)


class SignupModel(BaseModel):
    username: str
    password: str
    role: str


class UserModel(BaseModel):
    username: str
    role: str


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health check: touches the database once."""
    db_ok = True
    try:
        total_books = len(library.list_books())
    except PersistenceError:
        db_ok = False
        total_books = 0
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_books": total_books,
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Accounts ---
@app.post("/signup", response_model=UserModel, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupModel):
    return users.signup(payload.username, payload.password, payload.role).to_dict()


@app.get("/whoami", response_model=UserModel)
def whoami(current_user: CurrentUser = Depends(get_current_user)):
    return current_user.to_dict()


# --- Books (any logged-in user) ---
@app.get("/api/books", response_model=List[BookModel])
def list_books(current_user: CurrentUser = Depends(get_current_user)):
    return [b.to_dict() for b in library.list_books()]


# --- Student API ---
@app.get("/api/mybooks", response_model=List[IssueModel])
def my_books(current_user: CurrentUser = Depends(require_student)):
    return [i.to_dict() for i in library.list_open_issues_for_user(current_user.username)]


@app.get("/api/myrequests", response_model=List[RequestModel])
def my_requests(current_user: CurrentUser = Depends(require_student)):
    return [r.to_dict() for r in library.list_pending_for_user(current_user.username)]


@app.post("/api/request-borrow", response_model=RequestModel, status_code=status.HTTP_201_CREATED)
def request_borrow(payload: BookActionModel, current_user: CurrentUser = Depends(require_student)):
    return library.submit_borrow(current_user.username, payload.book_id).to_dict()


@app.post("/api/request-return", response_model=RequestModel, status_code=status.HTTP_201_CREATED)
def request_return(payload: BookActionModel, current_user: CurrentUser = Depends(require_student)):
    return library.submit_return(current_user.username, payload.book_id).to_dict()


# --- Admin API ---
@app.post("/api/books", response_model=BookModel, status_code=status.HTTP_201_CREATED)
def create_book(payload: BookCreateModel, current_user: CurrentUser = Depends(require_admin)):
    return library.create_book(payload.title, payload.author, payload.available).to_dict()


@app.delete("/api/books/{book_id}", response_model=BookModel)
def delete_book(book_id: int, current_user: CurrentUser = Depends(require_admin)):
    return library.delete_book(book_id).to_dict()


@app.get("/api/issued", response_model=List[IssueModel])
def list_issued(current_user: CurrentUser = Depends(require_admin)):
    return [i.to_dict() for i in library.list_issued()]


@app.get("/api/requests", response_model=List[RequestModel])
def list_pending(current_user: CurrentUser = Depends(require_admin)):
    return [r.to_dict() for r in library.list_pending()]


@app.post("/api/requests/approve", response_model=RequestModel)
def approve_request(payload: ResolveModel, current_user: CurrentUser = Depends(require_admin)):
    return library.approve(payload.request_id).to_dict()


@app.post("/api/requests/reject", response_model=RequestModel)
def reject_request(payload: ResolveModel, current_user: CurrentUser = Depends(require_admin)):
    return library.reject(payload.request_id).to_dict()
