"""Shared test configuration.

Settings are read from the environment at import time, so the required
values are seeded here before any dreamjournal module is imported.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="dreamjournal-tests-")

os.environ["SECRET_KEY"] = "test-secret-key-for-dreamjournal"
# A valid Fernet key (32 bytes, urlsafe base64)
os.environ["ENCRYPTION_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["APP_URL"] = "http://testserver"
os.environ["AI_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"
