"""Statement persistence: protocol, in-memory and Postgres implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from psycopg.types.json import Jsonb

from statement_rewards.models import ProcessingStatus, StatementRecord

if TYPE_CHECKING:
    from uuid import UUID

    import psycopg

logger = logging.getLogger(__name__)


class StatementRepository(Protocol):
    """Keyed store of StatementRecord, by id and by inbox key."""

    def create(self, record: StatementRecord) -> StatementRecord: ...

    def update(self, record: StatementRecord) -> StatementRecord: ...

    def get(self, record_id: UUID) -> StatementRecord | None: ...

    def find_by_inbox_key(
        self, user_id: str, file_name: str, message_id: str
    ) -> StatementRecord | None: ...

    def list_for_user(
        self, user_id: str, status: ProcessingStatus | None = None
    ) -> list[StatementRecord]: ...

    def delete(self, record_id: UUID) -> bool: ...


class InMemoryStatementRepository:
    """Dictionary-backed repository, used by tests and dry runs."""

    def __init__(self) -> None:
        self._records: dict[UUID, StatementRecord] = {}

    def create(self, record: StatementRecord) -> StatementRecord:
        if record.id in self._records:
            msg = f"Statement {record.id} already exists"
            raise ValueError(msg)
        self._records[record.id] = record.model_copy(deep=True)
        return record

    def update(self, record: StatementRecord) -> StatementRecord:
        if record.id not in self._records:
            msg = f"Statement {record.id} not found"
            raise LookupError(msg)
        self._records[record.id] = record.model_copy(deep=True)
        return record

    def get(self, record_id: UUID) -> StatementRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def find_by_inbox_key(
        self, user_id: str, file_name: str, message_id: str
    ) -> StatementRecord | None:
        for record in self._records.values():
            if (
                record.user_id == user_id
                and record.file_name == file_name
                and record.inbox is not None
                and record.inbox.message_id == message_id
            ):
                return record.model_copy(deep=True)
        return None

    def list_for_user(
        self, user_id: str, status: ProcessingStatus | None = None
    ) -> list[StatementRecord]:
        records = [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.user_id == user_id
            and (status is None or r.processing_status == status)
        ]
        return sorted(records, key=lambda r: r.upload_date, reverse=True)

    def delete(self, record_id: UUID) -> bool:
        return self._records.pop(record_id, None) is not None


_COLUMNS = (
    "id",
    "user_id",
    "file_name",
    "bank_name",
    "statement_period",
    "card_variant",
    "card_number",
    "reward_points",
    "raw_extracted_text",
    "ai_response",
    "processing_status",
    "error_message",
    "source",
    "upload_date",
    "inbox",
    "inbox_message_id",
)

_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM statements"


def record_to_row(record: StatementRecord) -> dict[str, Any]:
    """Flatten a record into column values; nested models become JSONB."""
    return {
        "id": record.id,
        "user_id": record.user_id,
        "file_name": record.file_name,
        "bank_name": record.bank_name,
        "statement_period": record.statement_period,
        "card_variant": record.card_variant,
        "card_number": record.card_number,
        "reward_points": Jsonb(
            record.reward_points.model_dump(mode="json", by_alias=True)
        ),
        "raw_extracted_text": record.raw_extracted_text,
        "ai_response": (
            Jsonb(record.ai_response) if record.ai_response is not None else None
        ),
        "processing_status": str(record.processing_status),
        "error_message": record.error_message,
        "source": str(record.source),
        "upload_date": record.upload_date,
        "inbox": (
            Jsonb(record.inbox.model_dump(mode="json", by_alias=True))
            if record.inbox is not None
            else None
        ),
        "inbox_message_id": record.inbox.message_id if record.inbox else None,
    }


def row_to_record(row: dict[str, Any]) -> StatementRecord:
    """Rebuild a record from a dict_row result."""
    data = dict(row)
    data.pop("inbox_message_id", None)
    return StatementRecord.model_validate(data)


class PostgresStatementRepository:
    """Repository over the statements table (see db.SCHEMA)."""

    def __init__(self, conn: psycopg.Connection[dict[str, Any]]) -> None:
        self.conn = conn

    def create(self, record: StatementRecord) -> StatementRecord:
        placeholders = ", ".join(f"%({c})s" for c in _COLUMNS)
        with self.conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO statements ({', '.join(_COLUMNS)}) "
                f"VALUES ({placeholders})",
                record_to_row(record),
            )
        self.conn.commit()
        return record

    def update(self, record: StatementRecord) -> StatementRecord:
        assignments = ", ".join(f"{c} = %({c})s" for c in _COLUMNS if c != "id")
        with self.conn.cursor() as cur:
            cur.execute(
                f"UPDATE statements SET {assignments} WHERE id = %(id)s",
                record_to_row(record),
            )
            updated = cur.rowcount
        self.conn.commit()
        if updated == 0:
            msg = f"Statement {record.id} not found"
            raise LookupError(msg)
        return record

    def get(self, record_id: UUID) -> StatementRecord | None:
        with self.conn.cursor() as cur:
            cur.execute(f"{_SELECT} WHERE id = %s", (record_id,))
            row = cur.fetchone()
        return row_to_record(row) if row else None

    def find_by_inbox_key(
        self, user_id: str, file_name: str, message_id: str
    ) -> StatementRecord | None:
        with self.conn.cursor() as cur:
            cur.execute(
                f"{_SELECT} WHERE user_id = %s AND file_name = %s "
                "AND inbox_message_id = %s LIMIT 1",
                (user_id, file_name, message_id),
            )
            row = cur.fetchone()
        return row_to_record(row) if row else None

    def list_for_user(
        self, user_id: str, status: ProcessingStatus | None = None
    ) -> list[StatementRecord]:
        with self.conn.cursor() as cur:
            if status is None:
                cur.execute(
                    f"{_SELECT} WHERE user_id = %s ORDER BY upload_date DESC",
                    (user_id,),
                )
            else:
                cur.execute(
                    f"{_SELECT} WHERE user_id = %s AND processing_status = %s "
                    "ORDER BY upload_date DESC",
                    (user_id, str(status)),
                )
            rows = cur.fetchall()
        return [row_to_record(row) for row in rows]

    def delete(self, record_id: UUID) -> bool:
        with self.conn.cursor() as cur:
            cur.execute("DELETE FROM statements WHERE id = %s", (record_id,))
            deleted = cur.rowcount
        self.conn.commit()
        if deleted:
            logger.info("Deleted statement %s", record_id)
        return bool(deleted)
