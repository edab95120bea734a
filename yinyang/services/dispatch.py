import asyncio
import logging

from yinyang.db.connection import get_connection

logger = logging.getLogger(__name__)


class DispatchQueue:
    """
    Outbox of completed requests awaiting image generation.
    The generation worker claims rows from generation_jobs; this side only appends.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _insert_job(self, request_id: str) -> None:
        with get_connection(self._db_path) as conn:
            conn.execute("INSERT INTO generation_jobs (request_id) VALUES (?)", (request_id,))
            conn.commit()

    async def enqueue(self, request_id: str) -> bool:
        """Hand a request id to the generation worker. Never raises; returns False on failure."""
        try:
            await asyncio.to_thread(self._insert_job, request_id)
        except Exception:
            logger.exception("[dispatch] enqueue failed | request_id=%s", request_id)
            return False
        logger.info("[dispatch] posted image generation request | request_id=%s", request_id)
        return True
