"""
pytest suite for the SQLite path store.
"""

import json
import os
import sqlite3
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from pathgraph.models import LearningPath, PathNode
from pathgraph.storage import PathNotFound, PathStore, delete_path, get_connection


SAMPLE = {
    "title": "Intro to Networks",
    "description": "Basics",
    "nodes": [
        {"id": "s", "type": "start", "x": 0, "y": 0, "data": {}},
        {"id": "t", "type": "theory", "x": 250, "y": 0, "data": {"title": "Intro"}},
        {"id": "e", "type": "end", "x": 500, "y": 0, "data": {}},
    ],
    "connections": [
        {"from": "s", "fromPort": "next", "to": "t", "toPort": "prev"},
        {"from": "t", "fromPort": "next", "to": "e", "toPort": "prev"},
    ],
}

SERVER_KEYS = ("id", "createdAt", "updatedAt")


class _LockedOnce:
    """Connection stand-in whose first statement hits a locked database."""

    def __init__(self, conn):
        self.conn = conn
        self.failures = 1

    def execute(self, *args):
        if self.failures:
            self.failures -= 1
            raise sqlite3.OperationalError("database is locked")
        return self.conn.execute(*args)

    def commit(self):
        self.conn.commit()


@pytest.fixture()
def store(tmp_path):
    return PathStore(str(tmp_path / "paths.db"))


class TestCreateGet:
    def test_round_trip(self, store):
        created = store.create(SAMPLE)
        fetched = store.get(created["id"])
        assert fetched == created
        for key in ("title", "description", "nodes", "connections"):
            assert fetched[key] == SAMPLE[key]

    def test_server_assigned_fields(self, store):
        doc = store.create({})
        assert all(doc[k] for k in SERVER_KEYS)
        assert doc["title"] == "Untitled Learning Path"
        assert doc["status"] == "draft"
        assert doc["lrsConfig"] is None
        assert doc["createdAt"] == doc["updatedAt"]

    def test_provided_status_kept(self, store):
        assert store.create({"status": "published"})["status"] == "published"

    def test_get_missing(self, store):
        with pytest.raises(PathNotFound) as exc_info:
            store.get("nope")
        assert isinstance(exc_info.value, KeyError)

    def test_load_parses_model(self, store):
        doc = store.create(SAMPLE)
        path = store.load(doc["id"])
        assert isinstance(path, LearningPath)
        assert path.connections[0].from_node == "s"


class TestUpdate:
    def test_only_present_keys_change(self, store):
        doc = store.create(SAMPLE)
        updated = store.update(doc["id"], {"title": "Renamed", "id": "hijack"})
        assert updated["id"] == doc["id"]
        assert updated["title"] == "Renamed"
        assert updated["description"] == "Basics"
        assert updated["nodes"] == doc["nodes"]
        assert store.get(doc["id"]) == updated

    def test_update_missing(self, store):
        with pytest.raises(PathNotFound):
            store.update("nope", {"title": "x"})

    def test_save_model(self, store):
        path = LearningPath(title="Fresh", nodes=[PathNode(id="s", type="start")])
        doc = store.save(path)
        path.id = doc["id"]
        path.title = "Second"
        again = store.save(path)
        assert again["id"] == doc["id"]
        assert store.get(doc["id"])["title"] == "Second"


class TestDeleteDuplicateList:
    def test_delete(self, store):
        doc = store.create(SAMPLE)
        store.delete(doc["id"])
        with pytest.raises(PathNotFound):
            store.get(doc["id"])
        with pytest.raises(PathNotFound):
            store.delete(doc["id"])

    @patch("pathgraph.storage.time.sleep")
    def test_delete_retries_when_locked(self, mock_sleep, store):
        doc = store.create(SAMPLE)
        conn = get_connection(store.db_path)
        try:
            delete_path(_LockedOnce(conn), doc["id"])
        finally:
            conn.close()
        assert mock_sleep.call_count == 1
        with pytest.raises(PathNotFound):
            store.get(doc["id"])

    def test_duplicate(self, store):
        doc = store.create(SAMPLE)
        store.update(doc["id"], {"status": "published"})
        copy = store.duplicate(doc["id"])
        assert copy["id"] != doc["id"]
        assert copy["title"] == "Intro to Networks (Copy)"
        assert copy["status"] == "draft"
        assert copy["nodes"] == doc["nodes"]
        assert copy["connections"] == doc["connections"]

    def test_duplicate_missing(self, store):
        with pytest.raises(PathNotFound):
            store.duplicate("nope")

    def test_list_summaries(self, store):
        a = store.create(SAMPLE)
        b = store.create({"title": "Empty"})
        rows = store.list()
        assert {r["id"] for r in rows} == {a["id"], b["id"]}
        by_id = {r["id"]: r for r in rows}
        assert by_id[a["id"]]["nodeCount"] == 3
        assert by_id[b["id"]]["nodeCount"] == 0
        assert "nodes" not in rows[0]

    def test_list_skips_corrupt_rows(self, store):
        store.create(SAMPLE)
        conn = get_connection(store.db_path)
        conn.execute(
            "INSERT INTO LearningPaths (id, title, status, document) VALUES (?, ?, ?, ?)",
            ("bad", "Bad", "draft", "{not json"),
        )
        conn.commit()
        conn.close()
        assert [r["title"] for r in store.list()] == ["Intro to Networks"]

    def test_document_column_is_json(self, store):
        doc = store.create(SAMPLE)
        conn = sqlite3.connect(store.db_path)
        raw = conn.execute(
            "SELECT document FROM LearningPaths WHERE id = ?", (doc["id"],)
        ).fetchone()[0]
        conn.close()
        assert json.loads(raw)["title"] == "Intro to Networks"
