"""
pytest configuration for AnchorVote tests.
Adds the project root directories to sys.path and provides the shared
database isolation and stub anchor fixtures.
"""
import sys
import os
import threading

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(ROOT, 'backend'))
sys.path.insert(0, os.path.join(ROOT, 'blockchain'))

import database


class StubAnchor:
    """Records submit() calls; returns tx_hash or raises error."""

    def __init__(self, tx_hash="0xabc123", error=None):
        self.tx_hash = tx_hash
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def submit(self, voter_id, ballot_id):
        with self._lock:
            self.calls.append((voter_id, ballot_id))
        if self.error is not None:
            raise self.error
        return self.tx_hash


@pytest.fixture
def isolated_db(tmp_path):
    """Each test gets its own SQLite database."""
    database.DB_PATH = tmp_path / "test_voting.db"
    # Reset thread-local connection
    database._local = threading.local()
    database.init_db()
    yield
    database.close_connection()


@pytest.fixture
def stub_anchor():
    return StubAnchor()
