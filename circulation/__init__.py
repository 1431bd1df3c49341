"""Library Circulation - core application package

This package contains:
- Workflow engine over inventory, issue ledger and request queue (library.py)
- Stores (inventory.py, ledger.py, requests_queue.py)
- Data models (models.py) and errors (errors.py)
- Persistence port and SQLite backend (database.py)
- Accounts (auth.py)
- API endpoints (api.py) and CLI (main.py)
"""
