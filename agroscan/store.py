# agroscan/store.py
"""
Image record persistence.

Responsibilities:
- Create records in "pending" and hand out their ids
- Move a record to "processing" and later to exactly one terminal state
- List, fetch and delete records per owner

Two backends share the ImageStore interface: an in-memory dict (local runs
and tests) and Postgres via psycopg2. Both are opened once at startup and
closed at shutdown by the app lifespan.
"""

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from .config import Settings
from .logger import console
from .models import AnalysisResult, ImageRecord, ImageStatus


class StoreError(Exception):
    pass


class RecordNotFound(StoreError):
    def __init__(self, record_id: str):
        super().__init__(f"image record {record_id} not found")
        self.record_id = record_id


class InvalidTransition(StoreError):
    def __init__(self, record_id: str, current: ImageStatus, target: ImageStatus):
        super().__init__(
            f"image record {record_id} cannot move from {current.value} to {target.value}"
        )
        self.record_id = record_id
        self.current = current
        self.target = target


def _check_result(status: ImageStatus, analysis: Optional[AnalysisResult]) -> None:
    if not status.is_terminal:
        raise ValueError(f"result writes must be terminal, got {status.value}")
    if status is ImageStatus.COMPLETED and analysis is None:
        raise ValueError("completed records need an analysis")
    if status is ImageStatus.FAILED and analysis is not None:
        raise ValueError("failed records cannot carry an analysis")


class ImageStore:
    """Interface shared by the store backends."""

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def create(self, owner_id: str, storage_path: str, filename: str, mime_type: str) -> str:
        raise NotImplementedError

    def get(self, record_id: str) -> ImageRecord:
        raise NotImplementedError

    def mark_processing(self, record_id: str) -> None:
        raise NotImplementedError

    def update_result(
        self,
        record_id: str,
        raw_text: Optional[str],
        analysis: Optional[AnalysisResult],
        status: ImageStatus,
    ) -> None:
        raise NotImplementedError

    def delete(self, record_id: str) -> None:
        raise NotImplementedError

    def list_by_owner(self, owner_id: str) -> List[ImageRecord]:
        raise NotImplementedError


class InMemoryImageStore(ImageStore):
    def __init__(self):
        self._records: Dict[str, ImageRecord] = {}
        # Workers write from threads (asyncio.to_thread)
        self._lock = threading.Lock()

    def create(self, owner_id: str, storage_path: str, filename: str, mime_type: str) -> str:
        record = ImageRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            filename=filename,
            storage_path=storage_path,
            mime_type=mime_type,
            status=ImageStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._records[record.id] = record
        return record.id

    def get(self, record_id: str) -> ImageRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            return record.model_copy(deep=True)

    def mark_processing(self, record_id: str) -> None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            if record.status is not ImageStatus.PENDING:
                raise InvalidTransition(record_id, record.status, ImageStatus.PROCESSING)
            self._records[record_id] = record.model_copy(update={"status": ImageStatus.PROCESSING})

    def update_result(self, record_id, raw_text, analysis, status) -> None:
        _check_result(status, analysis)
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            if record.status.is_terminal:
                raise InvalidTransition(record_id, record.status, status)
            # Swap in a new object so readers never see status without analysis
            self._records[record_id] = record.model_copy(
                update={"status": status, "raw_model_output": raw_text, "analysis": analysis}
            )

    def delete(self, record_id: str) -> None:
        with self._lock:
            if self._records.pop(record_id, None) is None:
                raise RecordNotFound(record_id)

    def list_by_owner(self, owner_id: str) -> List[ImageRecord]:
        with self._lock:
            records = [r.model_copy(deep=True) for r in self._records.values() if r.owner_id == owner_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


class PostgresImageStore(ImageStore):
    """
    Postgres backed record store.

    Keeps a single autocommit connection for the process. Every terminal
    update is a single UPDATE statement so status and analysis change
    together.
    """

    def __init__(self, host: str, port: int, dbname: str, user: str, password: str):
        self._params = dict(host=host, port=port, dbname=dbname, user=user, password=password)
        self._conn = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresImageStore":
        return cls(
            host=settings.db_host,
            port=settings.db_port,
            dbname=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
        )

    def open(self) -> None:
        if self._conn is not None and not self._conn.closed:
            return
        self._conn = psycopg2.connect(**self._params)
        self._conn.autocommit = True
        self._init_table()
        console.log(f"[green]Postgres image store connected ({self._params['host']})[/green]")

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            console.log("[blue]Postgres image store closed[/blue]")
        self._conn = None

    def _connection(self):
        if self._conn is None or self._conn.closed:
            raise StoreError("image store is not open")
        return self._conn

    def _init_table(self) -> None:
        with self._connection().cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    storage_path TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    raw_model_output TEXT,
                    analysis_json TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                );
                CREATE INDEX IF NOT EXISTS images_owner_idx ON images (owner_id, created_at DESC);
                """
            )

    @staticmethod
    def _row_to_record(row) -> ImageRecord:
        analysis = None
        if row.get("analysis_json"):
            analysis = AnalysisResult.model_validate(json.loads(row["analysis_json"]))
        return ImageRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            filename=row["filename"],
            storage_path=row["storage_path"],
            mime_type=row["mime_type"],
            status=ImageStatus(row["status"]),
            raw_model_output=row.get("raw_model_output"),
            analysis=analysis,
            created_at=row["created_at"],
        )

    def create(self, owner_id: str, storage_path: str, filename: str, mime_type: str) -> str:
        record_id = uuid.uuid4().hex
        with self._connection().cursor() as cur:
            cur.execute(
                """
                INSERT INTO images (id, owner_id, filename, storage_path, mime_type, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (record_id, owner_id, filename, storage_path, mime_type, ImageStatus.PENDING.value),
            )
        return record_id

    def get(self, record_id: str) -> ImageRecord:
        with self._connection().cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT * FROM images WHERE id = %s", (record_id,))
            row = cur.fetchone()
        if not row:
            raise RecordNotFound(record_id)
        return self._row_to_record(row)

    def mark_processing(self, record_id: str) -> None:
        with self._connection().cursor() as cur:
            cur.execute(
                "UPDATE images SET status = %s WHERE id = %s AND status = %s",
                (ImageStatus.PROCESSING.value, record_id, ImageStatus.PENDING.value),
            )
            updated = cur.rowcount
        if updated == 0:
            current = self.get(record_id).status
            raise InvalidTransition(record_id, current, ImageStatus.PROCESSING)

    def update_result(self, record_id, raw_text, analysis, status) -> None:
        _check_result(status, analysis)
        analysis_json = analysis.model_dump_json(by_alias=True) if analysis is not None else None
        with self._connection().cursor() as cur:
            cur.execute(
                """
                UPDATE images
                SET raw_model_output = %s, analysis_json = %s, status = %s
                WHERE id = %s AND status IN (%s, %s)
                """,
                (
                    raw_text,
                    analysis_json,
                    status.value,
                    record_id,
                    ImageStatus.PENDING.value,
                    ImageStatus.PROCESSING.value,
                ),
            )
            updated = cur.rowcount
        if updated == 0:
            current = self.get(record_id).status
            raise InvalidTransition(record_id, current, status)

    def delete(self, record_id: str) -> None:
        with self._connection().cursor() as cur:
            cur.execute("DELETE FROM images WHERE id = %s", (record_id,))
            deleted = cur.rowcount
        if deleted == 0:
            raise RecordNotFound(record_id)

    def list_by_owner(self, owner_id: str) -> List[ImageRecord]:
        with self._connection().cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                "SELECT * FROM images WHERE owner_id = %s ORDER BY created_at DESC",
                (owner_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_record(row) for row in rows]


def build_store(settings: Settings) -> ImageStore:
    if settings.store_backend == "memory":
        return InMemoryImageStore()
    if settings.store_backend == "postgres":
        return PostgresImageStore.from_settings(settings)
    raise ValueError(f"unknown STORE_BACKEND {settings.store_backend!r}")
