import re
from typing import Any, Optional

from circulation.errors import ValidationError
from circulation.models import Role


class TextValidator:
    """Checks and cleans free-text fields before they reach the stores."""

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # drop HTML tags and collapse whitespace
        cleaned = re.sub(r"<[^>]*>", "", text)
        return " ".join(cleaned.split())

    @staticmethod
    def validate_title(title: Optional[str]) -> str:
        cleaned = TextValidator.sanitize_text(title)
        if not cleaned:
            raise ValidationError("title & author required")
        return cleaned

    @staticmethod
    def validate_author(author: Optional[str]) -> str:
        cleaned = TextValidator.sanitize_text(author)
        if not cleaned:
            raise ValidationError("title & author required")
        if cleaned.isdigit():
            raise ValidationError("author cannot be a number")
        return cleaned


class RecordValidator:
    """Coerces identifiers and counters coming from HTTP bodies or the CLI."""

    @staticmethod
    def validate_id(value: Any, field: str = "id") -> int:
        if isinstance(value, bool) or value is None or value == "":
            raise ValidationError(f"{field} required")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an integer") from None
        if number < 1:
            raise ValidationError(f"{field} must be positive")
        return number

    @staticmethod
    def validate_count(value: Any) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError("available must be an integer") from None
        if number < 0:
            raise ValidationError("available cannot be negative")
        return number

    @staticmethod
    def validate_username(username: Optional[str]) -> str:
        cleaned = (username or "").strip()
        if not cleaned:
            raise ValidationError("username required")
        if not re.fullmatch(r"[A-Za-z0-9_.@-]{1,64}", cleaned):
            raise ValidationError("username may only contain letters, digits and _ . @ -")
        return cleaned

    @staticmethod
    def validate_role(role: Optional[str]) -> Role:
        try:
            return Role((role or "").strip().lower())
        except ValueError:
            raise ValidationError("Invalid role") from None
