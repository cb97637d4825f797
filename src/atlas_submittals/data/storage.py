import hashlib
import sqlite3
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class StoredUpload:
    id: int
    dataset: str
    file_name: str
    sha256: str
    size: int
    uploaded_by: Optional[str]
    uploaded_at: str
    record_count: Optional[int] = None
    content: Optional[bytes] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dataset": self.dataset,
            "fileName": self.file_name,
            "sha256": self.sha256,
            "size": self.size,
            "uploadedBy": self.uploaded_by,
            "uploadedAt": self.uploaded_at,
            "recordCount": self.record_count,
        }


class UploadStore:
    """
    Thin wrapper over sqlite3 holding uploaded spreadsheet blobs.
    Each dataset has at most one active upload; older ones stay as history.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self):
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS uploads (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    dataset TEXT NOT NULL,
                    file_name TEXT,
                    sha256 TEXT,
                    size INTEGER,
                    content BLOB,
                    uploaded_by TEXT,
                    uploaded_at TEXT,
                    record_count INTEGER,
                    active INTEGER DEFAULT 0
                );
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_uploads_dataset ON uploads(dataset, active);")
            conn.commit()

    def save_upload(
        self,
        dataset: str,
        file_name: str,
        content: bytes,
        uploaded_by: Optional[str] = None,
    ) -> StoredUpload:
        """Store a blob and make it the dataset's active upload."""
        digest = hashlib.sha256(content).hexdigest()
        uploaded_at = datetime.now(UTC).isoformat()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("UPDATE uploads SET active = 0 WHERE dataset = ?", (dataset,))
            cur.execute(
                """
                INSERT INTO uploads (dataset, file_name, sha256, size, content, uploaded_by, uploaded_at, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                """,
                (dataset, file_name, digest, len(content), sqlite3.Binary(content), uploaded_by, uploaded_at),
            )
            conn.commit()
            upload_id = cur.lastrowid
        return StoredUpload(
            id=upload_id,
            dataset=dataset,
            file_name=file_name,
            sha256=digest,
            size=len(content),
            uploaded_by=uploaded_by,
            uploaded_at=uploaded_at,
            content=content,
        )

    def active_upload(self, dataset: str) -> Optional[StoredUpload]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, dataset, file_name, sha256, size, uploaded_by, uploaded_at, record_count, content
                FROM uploads WHERE dataset = ? AND active = 1
                ORDER BY id DESC LIMIT 1
                """,
                (dataset,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return StoredUpload(*row[:8], content=bytes(row[8]) if row[8] is not None else None)

    def history(self, dataset: str, limit: int = 20) -> List[StoredUpload]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, dataset, file_name, sha256, size, uploaded_by, uploaded_at, record_count
                FROM uploads WHERE dataset = ?
                ORDER BY id DESC LIMIT ?
                """,
                (dataset, limit),
            )
            rows = cur.fetchall()
        return [StoredUpload(*row) for row in rows]

    def set_record_count(self, upload_id: int, record_count: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE uploads SET record_count = ? WHERE id = ?", (record_count, upload_id))
            conn.commit()
