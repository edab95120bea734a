import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "migrations"


@contextmanager
def get_connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Yield a WAL-mode SQLite connection with Row factory.
    Uncommitted work is rolled back on error; the connection is always closed.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def pending_migrations(conn: sqlite3.Connection) -> list[Path]:
    applied = {row["filename"] for row in conn.execute("SELECT filename FROM _schema_migrations")}
    return [path for path in sorted(_MIGRATIONS_DIR.glob("*.sql")) if path.name not in applied]


def run_migrations(db_path: str) -> list[str]:
    """Bring the ledger/cache schema up to date. Returns the migration files applied."""
    with get_connection(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS _schema_migrations ("
            " filename TEXT PRIMARY KEY,"
            " applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )
        conn.commit()

        applied = []
        for migration in pending_migrations(conn):
            logger.info("[db] applying migration | file=%s | db=%s", migration.name, db_path)
            conn.executescript(migration.read_text())
            conn.execute("INSERT INTO _schema_migrations (filename) VALUES (?)", (migration.name,))
            conn.commit()
            applied.append(migration.name)
    return applied
