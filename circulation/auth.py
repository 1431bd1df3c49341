import hashlib
import hmac
import logging
import secrets
import threading
from typing import List, Optional

from circulation.config import settings
from circulation.database import USERS, Database, UnitOfWork, next_id
from circulation.errors import AuthenticationError, Conflict, NotFound, ValidationError
from circulation.models import CurrentUser, Role
from circulation.validators import RecordValidator

logger = logging.getLogger(__name__)

_ITERATIONS = 100_000

DEMO_USERS = [
    ("admin", "admin123", Role.ADMIN),
    ("student1", "stud123", Role.STUDENT),
]


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Salted PBKDF2 hash in ``salt$hexdigest`` form."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), _ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return hmac.compare_digest(hash_password(password, salt), stored)


class UserDirectory:
    """Accounts and roles; the identity provider the HTTP layer asks."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self._lock = threading.RLock()

    def _records(self) -> List[dict]:
        return self.database.load(USERS)

    def get(self, username: str) -> CurrentUser:
        for record in self._records():
            if record["username"] == username:
                return CurrentUser(record["username"], record["role"])
        raise NotFound(f"User {username} not found.")

    def signup(self, username: str, password: str, role: str) -> CurrentUser:
        if not username or not password or not role:
            raise ValidationError("Missing fields")
        username = RecordValidator.validate_username(username)
        parsed_role = RecordValidator.validate_role(role)
        if len(password) < settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {settings.min_password_length} characters"
            )
        with self._lock, self.database.transaction():
            uow = UnitOfWork(self.database)
            records = uow.collection(USERS)
            if any(r["username"] == username for r in records):
                raise Conflict("Username exists")
            records.append(self._new_record(records, username, password, parsed_role))
            uow.touch(USERS)
            uow.commit()
        logger.info(f"User {username} signed up as {parsed_role.value}")
        return CurrentUser(username, parsed_role)

    @staticmethod
    def _new_record(records: List[dict], username: str, password: str, role: Role) -> dict:
        return {
            "id": next_id(records),
            "username": username,
            "password_hash": hash_password(password),
            "role": role.value,
        }

    def authenticate(self, username: str, password: str) -> CurrentUser:
        for record in self._records():
            if record["username"] == username and verify_password(password, record.get("password_hash", "")):
                return CurrentUser(record["username"], record["role"])
        logger.warning(f"Failed login for {username!r}")
        raise AuthenticationError("Invalid credentials")

    def seed_if_empty(self) -> int:
        """Create the demo admin and student accounts on an empty directory.

        The demo passwords are fixed, so they bypass the signup length rule.
        """
        with self._lock, self.database.transaction():
            uow = UnitOfWork(self.database)
            records = uow.collection(USERS)
            if records:
                return 0
            for username, password, role in DEMO_USERS:
                records.append(self._new_record(records, username, password, role))
            uow.touch(USERS)
            uow.commit()
        logger.info(f"Seeded {len(DEMO_USERS)} demo users")
        return len(DEMO_USERS)
