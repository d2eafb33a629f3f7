import base64
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from focus_schema import AlertRating

logger = logging.getLogger(__name__)


@dataclass
class ScreenshotRecord:
    id: int
    timestamp: int
    ocr_text: str
    # Relative to the store's root.
    file_path: str
    base64_image: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": str(self.id),
            "timestamp": str(self.timestamp),
            "ocr_text": self.ocr_text,
            "file_path": self.file_path,
            "base64_image": self.base64_image,
        }


class ScreenshotStore:
    """SQLite timeline of screenshots with a full-text index over the OCR text."""

    def __init__(self, root: Path, db_filename: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.db_path = self.root / db_filename
        self.create_db()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def create_db(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    timestamp TIMESTAMP NOT NULL,
                    ocr_text TEXT NOT NULL,
                    file_path TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE VIRTUAL TABLE IF NOT EXISTS ocr_text_index USING fts5(
                    ocr_text,
                    content='documents',
                    content_rowid='id'
                )
                """
            )
            conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS file_path_index ON documents (file_path)")
            # Append-only.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS focusguard_alert_ratings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TIMESTAMP NOT NULL,
                    screenshot_id INTEGER NOT NULL,
                    liked INTEGER NOT NULL,
                    png_image_path TEXT NOT NULL,
                    job_title TEXT NOT NULL,
                    job_role TEXT NOT NULL
                )
                """
            )

    def save_screenshot_meta(self, file_path: str, ocr_text: str, now: Optional[datetime] = None) -> int:
        """Insert a screenshot row plus its OCR text into the FTS index; returns the new id."""
        now = now or datetime.now()
        with self.get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO documents (timestamp, ocr_text, file_path) VALUES (?, ?, ?)",
                (int(now.timestamp()), ocr_text, file_path),
            )
            screenshot_id = cursor.lastrowid
            conn.execute(
                "INSERT INTO ocr_text_index (rowid, ocr_text) VALUES (?, ?)",
                (screenshot_id, ocr_text),
            )
        logger.debug("Saved screenshot %s (%s)", screenshot_id, file_path)
        return screenshot_id

    def get_screenshot_by_id(self, screenshot_id: int) -> Optional[ScreenshotRecord]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT id, timestamp, ocr_text, file_path FROM documents WHERE id = ?",
                (screenshot_id,),
            ).fetchone()
        return self._to_record(row) if row else None

    def get_all_screenshots(self, limit: int = 100) -> List[ScreenshotRecord]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT id, timestamp, ocr_text, file_path FROM documents ORDER BY timestamp DESC, id DESC LIMIT ?",
                (max(limit, 1),),
            ).fetchall()
        return [self._to_record(row) for row in rows]

    def search_screenshots_ocr(self, term: str, limit: int = 100) -> List[ScreenshotRecord]:
        """Full-text search over OCR text; an empty term returns the latest screenshots."""
        term = term.strip()
        if not term:
            return self.get_all_screenshots(limit)
        try:
            with self.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT d.id, d.timestamp, d.ocr_text, d.file_path
                    FROM ocr_text_index
                    JOIN documents d ON d.id = ocr_text_index.rowid
                    WHERE ocr_text_index MATCH ?
                    ORDER BY rank, d.timestamp DESC
                    LIMIT ?
                    """,
                    (term, max(limit, 1)),
                ).fetchall()
        except sqlite3.OperationalError as exc:
            logger.warning("Invalid search term %r: %s", term, exc)
            return []
        return [self._to_record(row) for row in rows]

    def save_alert_rating(self, rating: AlertRating) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO focusguard_alert_ratings
                    (created_at, screenshot_id, liked, png_image_path, job_title, job_role)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    int(rating.created_at.timestamp()),
                    rating.screenshot_id,
                    int(rating.liked),
                    rating.png_image_path,
                    rating.job_title,
                    rating.job_role,
                ),
            )
            return cursor.lastrowid

    def get_alert_ratings(self) -> List[Dict]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT screenshot_id, liked, png_image_path, job_title, job_role, created_at "
                "FROM focusguard_alert_ratings ORDER BY id"
            ).fetchall()
        return [{**dict(row), "liked": bool(row["liked"])} for row in rows]

    def _to_record(self, row: sqlite3.Row) -> ScreenshotRecord:
        return ScreenshotRecord(
            id=row["id"],
            timestamp=row["timestamp"],
            ocr_text=row["ocr_text"],
            file_path=row["file_path"],
            base64_image=self._load_base64(row["file_path"]),
        )

    def _load_base64(self, file_path: str) -> str:
        path = self.root / file_path
        if not path.exists():
            logger.warning("Screenshot file missing: %s", path)
            return ""
        return base64.b64encode(path.read_bytes()).decode("ascii")
