"""Database connection manager with FK enforcement and WAL mode."""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

DEFAULT_DB_PATH = "./data/campus.db"
SCHEMA_SQL_PATH = Path(__file__).parent / "schema.sql"


def resolve_db_path(db_path: str = None) -> str:
    """Return db_path, or DB_PATH from the environment, or the default path."""
    if db_path is None:
        db_path = os.environ.get('DB_PATH', DEFAULT_DB_PATH)
    return db_path


def open_connection(db_path: str = None) -> sqlite3.Connection:
    """
    Open a long-lived SQLite connection configured like get_connection().

    Used by the FastAPI lifespan, which keeps one connection for the app's lifetime.
    The caller owns the connection and must close it.
    """
    conn = sqlite3.connect(resolve_db_path(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def get_connection(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager that yields an SQLite connection with FK enforcement and WAL mode.

    Args:
        db_path: Path to the SQLite database file. If None, reads from DB_PATH
                 environment variable, falling back to './data/campus.db'.

    Yields:
        sqlite3.Connection: Database connection with foreign keys enabled,
                           WAL mode active, and row_factory set to sqlite3.Row.

    Example:
        with get_connection() as conn:
            rows = conn.execute("SELECT * FROM posts_public").fetchall()
    """
    conn = None
    try:
        conn = open_connection(db_path)
        yield conn
    finally:
        if conn is not None:
            conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    """
    Create all tables, indexes and views from schema.sql.

    The script is idempotent: tables and indexes use IF NOT EXISTS and the
    posts_public view is dropped and recreated. executescript() resets
    per-connection PRAGMAs, so foreign keys are re-enabled afterwards.
    """
    sql = SCHEMA_SQL_PATH.read_text()
    lines = [line for line in sql.splitlines()
             if not line.strip().upper().startswith("PRAGMA")]
    conn.executescript("\n".join(lines))
    conn.execute("PRAGMA foreign_keys = ON")
