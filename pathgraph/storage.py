"""
Database module for learning-path documents.

One JSON document per path id in the ``LearningPaths`` table. Writes are
whole-document overwrites: concurrent saves of the same id race and the
later write wins.
"""

import json
import logging
import os
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from pathgraph.models import LearningPath, PathSummary
from pathgraph.utils import utc_now_iso

logger = logging.getLogger(__name__)

UPDATABLE_KEYS = ("title", "description", "status", "nodes", "connections", "lrsConfig")


class PathNotFound(KeyError):
    """Requested path id is absent from the store."""

    def __init__(self, path_id: str) -> None:
        self.path_id = path_id
        super().__init__(path_id)

    def __str__(self) -> str:
        return f"Learning path not found: {self.path_id}"


# =========================================================================
# Schema constants
# =========================================================================

_CREATE_LEARNING_PATHS = """\
CREATE TABLE IF NOT EXISTS LearningPaths (
    id          TEXT    PRIMARY KEY,
    title       TEXT    NOT NULL,
    status      TEXT    CHECK(status IN ('draft','published')),
    document    TEXT    NOT NULL,
    created_at  TIMESTAMP,
    updated_at  TIMESTAMP
);
"""

_CREATE_IDX_UPDATED = """\
CREATE INDEX IF NOT EXISTS idx_paths_updated
    ON LearningPaths(updated_at);
"""


# =========================================================================
# Connection helper
# =========================================================================


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with WAL mode and row-factory enabled."""
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


def migrate_db(db_path: str) -> None:
    """Create (or verify) the ``LearningPaths`` table."""
    conn = get_connection(db_path)
    try:
        conn.execute(_CREATE_LEARNING_PATHS)
        conn.execute(_CREATE_IDX_UPDATED)
        conn.commit()
        logger.info("Path store migration OK at %s", os.path.abspath(db_path))
    finally:
        conn.close()


# =========================================================================
# Lock-retry helper
# =========================================================================

_SQLITE_LOCK_RETRIES = 5
_SQLITE_LOCK_BASE_DELAY = 0.1


def _retry_on_lock(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Wrap *fn* with SQLite-lock retry."""
    for attempt in range(1, _SQLITE_LOCK_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower() and attempt < _SQLITE_LOCK_RETRIES:
                delay = _SQLITE_LOCK_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "SQLite locked (attempt %d/%d) — retrying in %.2fs",
                    attempt, _SQLITE_LOCK_RETRIES, delay,
                )
                time.sleep(delay)
            else:
                raise


# =========================================================================
# Read helpers
# =========================================================================


def list_paths(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """Return path summaries, most recently updated first.

    Rows whose document no longer parses are skipped with a warning.
    """
    rows = conn.execute(
        "SELECT id, document FROM LearningPaths ORDER BY updated_at DESC, id"
    ).fetchall()
    summaries: List[Dict[str, Any]] = []
    for row in rows:
        try:
            doc = json.loads(row["document"])
            summary = PathSummary(
                id=doc["id"],
                title=doc.get("title") or "",
                description=doc.get("description") or "",
                status=doc.get("status") or "draft",
                node_count=len(doc.get("nodes") or []),
                created_at=doc.get("createdAt"),
                updated_at=doc.get("updatedAt"),
            )
        except (ValueError, KeyError, ValidationError) as exc:
            logger.warning("Skipping corrupt path document %s: %s", row["id"], exc)
            continue
        summaries.append(summary.model_dump(by_alias=True))
    return summaries


def get_path(conn: sqlite3.Connection, path_id: str) -> Dict[str, Any]:
    """Return the stored document for *path_id*.

    Raises:
        PathNotFound: no such id.
    """
    row = conn.execute(
        "SELECT document FROM LearningPaths WHERE id = ?", (path_id,)
    ).fetchone()
    if row is None:
        raise PathNotFound(path_id)
    return json.loads(row["document"])


# =========================================================================
# Write helpers
# =========================================================================


def _write(conn: sqlite3.Connection, doc: Dict[str, Any]) -> None:
    def _do_write() -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO LearningPaths
                (id, title, status, document, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (doc["id"], doc["title"], doc["status"], json.dumps(doc),
             doc["createdAt"], doc["updatedAt"]),
        )
        conn.commit()

    _retry_on_lock(_do_write)


def _normalise(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip *doc* through :class:`LearningPath` to the persisted shape."""
    return LearningPath.model_validate(doc).to_document()


def create_path(conn: sqlite3.Connection, data: Dict[str, Any]) -> Dict[str, Any]:
    """Store a new path built from the partial *data*; assigns id + timestamps."""
    now = utc_now_iso()
    doc = _normalise({
        "id": str(uuid.uuid4()),
        "title": data.get("title") or "Untitled Learning Path",
        "description": data.get("description") or "",
        "status": data.get("status") or "draft",
        "nodes": data.get("nodes") or [],
        "connections": data.get("connections") or [],
        "lrsConfig": data.get("lrsConfig"),
        "createdAt": now,
        "updatedAt": now,
    })
    _write(conn, doc)
    logger.info("Created learning path %s (%r).", doc["id"], doc["title"])
    return doc


def update_path(
    conn: sqlite3.Connection, path_id: str, data: Dict[str, Any],
) -> Dict[str, Any]:
    """Overwrite the keys of *data* present in ``UPDATABLE_KEYS``.

    Raises:
        PathNotFound: no such id.
    """
    existing = get_path(conn, path_id)
    updated = dict(existing)
    for key in UPDATABLE_KEYS:
        if key in data:
            updated[key] = data[key]
    updated["updatedAt"] = utc_now_iso()
    doc = _normalise(updated)
    _write(conn, doc)
    logger.info("Updated learning path %s.", path_id)
    return doc


def delete_path(conn: sqlite3.Connection, path_id: str) -> None:
    """Delete *path_id*.

    Raises:
        PathNotFound: no such id.
    """
    def _do_delete() -> int:
        cursor = conn.execute("DELETE FROM LearningPaths WHERE id = ?", (path_id,))
        conn.commit()
        return cursor.rowcount

    if _retry_on_lock(_do_delete) == 0:
        raise PathNotFound(path_id)
    logger.info("Deleted learning path %s.", path_id)


def duplicate_path(conn: sqlite3.Connection, path_id: str) -> Dict[str, Any]:
    """Copy *path_id* under a new id as a draft titled ``"<title> (Copy)"``."""
    original = get_path(conn, path_id)
    copy = dict(original)
    copy["title"] = f"{original.get('title', '')} (Copy)"
    copy["status"] = "draft"
    return create_path(conn, copy)


# =========================================================================
# Store facade
# =========================================================================


class PathStore:
    """The list/get/create/update/delete/duplicate contract over one DB file.

    Each call opens its own connection, so one store may be shared by
    request handlers running on different threads.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        migrate_db(db_path)

    def _call(self, fn, *args):  # type: ignore[no-untyped-def]
        conn = get_connection(self.db_path)
        try:
            return fn(conn, *args)
        finally:
            conn.close()

    def list(self) -> List[Dict[str, Any]]:
        return self._call(list_paths)

    def get(self, path_id: str) -> Dict[str, Any]:
        return self._call(get_path, path_id)

    def load(self, path_id: str) -> LearningPath:
        """Return the stored document parsed as a :class:`LearningPath`."""
        return LearningPath.model_validate(self.get(path_id))

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._call(create_path, data)

    def update(self, path_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._call(update_path, path_id, data)

    def delete(self, path_id: str) -> None:
        self._call(delete_path, path_id)

    def duplicate(self, path_id: str) -> Dict[str, Any]:
        return self._call(duplicate_path, path_id)

    def save(self, path: LearningPath) -> Dict[str, Any]:
        """Create *path* if it has no id yet, otherwise overwrite it."""
        doc = path.to_document()
        if path.id is None:
            return self.create(doc)
        try:
            return self.update(path.id, doc)
        except PathNotFound:
            created = self.create(doc)
            logger.warning(
                "Path %s vanished before save; stored as new path %s.",
                path.id, created["id"],
            )
            return created
