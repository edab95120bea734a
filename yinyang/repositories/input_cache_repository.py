import sqlite3

from yinyang.db.connection import get_connection
from yinyang.models.cache_entry import CacheEntry
from yinyang.repositories.base import AbstractInputCacheRepository


class InputCacheRepository(AbstractInputCacheRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def find_by_source_url(self, source_url: str) -> CacheEntry | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                "SELECT source_url, content_type, storage_id FROM input_cache WHERE source_url = ?",
                (source_url,),
            ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            source_url=row["source_url"],
            content_type=row["content_type"],
            storage_id=row["storage_id"],
        )

    def insert(self, entry: CacheEntry) -> bool:
        with get_connection(self._db_path) as conn:
            try:
                conn.execute(
                    "INSERT INTO input_cache (source_url, content_type, storage_id) VALUES (?, ?, ?)",
                    (entry.source_url, entry.content_type, entry.storage_id),
                )
            except sqlite3.IntegrityError:
                return False
            conn.commit()
        return True
