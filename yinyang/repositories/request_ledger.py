import json
import logging
import sqlite3

from yinyang.db.connection import get_connection
from yinyang.models.request import PENDING, RequestRecord
from yinyang.repositories.base import AbstractRequestLedger
from yinyang.services.errors import LedgerConflict

logger = logging.getLogger(__name__)


class RequestLedger(AbstractRequestLedger):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def create(self, record: RequestRecord) -> None:
        if record.status != PENDING:
            raise ValueError(f"new ledger records must be pending, got {record.status!r}")
        with get_connection(self._db_path) as conn:
            try:
                conn.execute(
                    "INSERT INTO requests (request_id, status, record) VALUES (?, ?, ?)",
                    (record.request_id, record.status, json.dumps(record.to_dict())),
                )
            except sqlite3.IntegrityError as exc:
                raise LedgerConflict(f"request {record.request_id} already exists") from exc
            conn.commit()

    def finalize(self, record: RequestRecord) -> None:
        """
        Single write moving a record to its terminal state.
        Only a row still pending (or absent) is written; terminal rows are immutable.
        """
        if not record.is_terminal:
            raise ValueError(f"finalize needs a terminal status, got {record.status!r}")
        with get_connection(self._db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO requests (request_id, status, record, finalized_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(request_id) DO UPDATE SET
                    status       = excluded.status,
                    record       = excluded.record,
                    finalized_at = excluded.finalized_at
                WHERE requests.status = 'pending'
                """,
                (record.request_id, record.status, json.dumps(record.to_dict())),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise LedgerConflict(f"request {record.request_id} is already finalized")
        logger.debug("[ledger] finalized | request_id=%s | status=%s", record.request_id, record.status)

    def read(self, request_id: str) -> RequestRecord | None:
        with get_connection(self._db_path) as conn:
            row = conn.execute(
                "SELECT record FROM requests WHERE request_id = ?", (request_id,)
            ).fetchone()
        if row is None:
            return None
        return RequestRecord.from_dict(json.loads(row["record"]))
