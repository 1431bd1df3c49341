import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "5000"))

    # Storage settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "circulation.db")
    legacy_data_dir: Optional[str] = os.getenv("LIBRARY_LEGACY_DATA_DIR")
    seed_demo_data: bool = _flag("SEED_DEMO_DATA", "True")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation Manager")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Circulation rules
    default_book_copies: int = int(os.getenv("DEFAULT_BOOK_COPIES", "1"))
    min_password_length: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))


settings = Settings()
