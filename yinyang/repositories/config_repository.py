from yinyang.db.connection import get_connection
from yinyang.repositories.base import AbstractConfigRepository


class ConfigRepository(AbstractConfigRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get(self, name: str) -> str | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute("SELECT value FROM config WHERE name = ?", (name,)).fetchone()
        return row["value"] if row else None

    def set(self, name: str, value: str) -> None:
        with get_connection(self._db_path) as conn:
            conn.execute(
                """
                INSERT INTO config (name, value) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET value = excluded.value
                """,
                (name, value),
            )
            conn.commit()
