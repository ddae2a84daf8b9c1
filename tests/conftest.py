"""
Shared pytest fixtures for Campus Pulse tests.

These fixtures provide temporary databases built from schema.sql/seed.sql, a few
users and posts, and a FastAPI TestClient bound to a temporary database.
All tests are behavioral - they verify what the code should do, not how it does it.
"""

import os
import sqlite3
import tempfile
from pathlib import Path

import pytest

# Paths to SQL files relative to the repository root
_DB_DIR = Path(__file__).parent.parent / "src" / "backend" / "db"
SCHEMA_SQL_PATH = _DB_DIR / "schema.sql"
SEED_SQL_PATH = _DB_DIR / "seed.sql"

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"


def _exec_sql_file(conn, path):
    """Execute a .sql file on an open connection, handling PRAGMAs separately."""
    sql = path.read_text(encoding="utf-8")
    # executescript auto-commits and resets per-connection PRAGMAs, so run them separately
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    lines = [line for line in sql.splitlines()
             if not line.strip().upper().startswith("PRAGMA")]
    conn.executescript("\n".join(lines))
    conn.execute("PRAGMA foreign_keys = ON")


def _load_schema(conn):
    _exec_sql_file(conn, SCHEMA_SQL_PATH)


def _load_seed(conn):
    """Execute seed.sql on an open connection (schema must already be loaded)."""
    _exec_sql_file(conn, SEED_SQL_PATH)


def insert_post(conn, post_id, user_id=ALICE, post_type="discussion", upvotes=0, downvotes=0,
                identity_type="anonymous", title="A post title", content="Some post content here",
                community_id=None, is_pinned=0, comment_count=0, created_at=None):
    """Insert a post row directly, bypassing validation, for test setup."""
    conn.execute("""
        INSERT INTO posts (id, user_id, community_id, title, content, post_type, identity_type,
                           upvotes, downvotes, is_pinned, comment_count, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                COALESCE(?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now')))
    """, (post_id, user_id, community_id, title, content, post_type, identity_type,
          upvotes, downvotes, is_pinned, comment_count, created_at))
    conn.commit()


def insert_comment(conn, comment_id, post_id, user_id=BOB, content="A comment", upvotes=0, downvotes=0):
    conn.execute("""
        INSERT INTO comments (id, post_id, user_id, content, upvotes, downvotes)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (comment_id, post_id, user_id, content, upvotes, downvotes))
    conn.commit()


@pytest.fixture
def temp_db_path():
    """Provide a temporary database file path that is cleaned up after test."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    yield db_path

    if os.path.exists(db_path):
        os.unlink(db_path)
    for suffix in ['-wal', '-shm']:
        wal_file = db_path + suffix
        if os.path.exists(wal_file):
            os.unlink(wal_file)


@pytest.fixture
def schema_initialized_db(temp_db_path):
    """Provide a connection to a database with schema.sql applied."""
    conn = sqlite3.connect(temp_db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    _load_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def seeded_db(schema_initialized_db):
    """Provide a database with schema and default communities."""
    _load_seed(schema_initialized_db)
    return schema_initialized_db


@pytest.fixture
def post_db(seeded_db):
    """Seeded database with one post (upvotes=5, downvotes=2) and one comment on it."""
    insert_post(seeded_db, "p-1", user_id=ALICE, upvotes=5, downvotes=2, title="Is the library open late?")
    insert_comment(seeded_db, "c-1", "p-1", user_id=BOB)
    return seeded_db


@pytest.fixture
def expected_tables():
    return [
        'communities',
        'posts',
        'comments',
        'votes',
        'notifications',
        'chat_conversations',
        'chat_messages',
        'profiles',
    ]


@pytest.fixture
def test_client(temp_db_path):
    """Provide a FastAPI TestClient backed by a temporary seeded database.

    Sets DB_PATH env var so the app lifespan connects to the temp database.
    Uses context manager to ensure lifespan startup/shutdown run properly.
    """
    from fastapi.testclient import TestClient
    from src.api.app import app

    old_db_path = os.environ.get('DB_PATH')
    os.environ['DB_PATH'] = temp_db_path

    conn = sqlite3.connect(temp_db_path)
    _load_schema(conn)
    _load_seed(conn)
    insert_post(conn, "p-1", user_id=ALICE, upvotes=5, downvotes=2, post_type="question",
                title="Best place to study at night?")
    conn.close()

    with TestClient(app) as client:
        yield client

    if old_db_path is not None:
        os.environ['DB_PATH'] = old_db_path
    elif 'DB_PATH' in os.environ:
        del os.environ['DB_PATH']
