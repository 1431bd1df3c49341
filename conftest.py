import pytest

from circulation.database import SQLiteDatabase
from circulation.library import Library


@pytest.fixture
def lib(tmp_path):
    # Each test gets its own SQLite file
    db_file = str(tmp_path / "circulation_test.db")
    lib = Library(SQLiteDatabase(db_file))
    yield lib
    lib.close()
