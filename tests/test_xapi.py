"""
pytest suite for statement building and record-store delivery.

``requests.post`` is patched throughout; no network access is needed.
"""

import os
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from pathgraph.models import LearningPath, Learner, LrsConfig, PathNode
from pathgraph.xapi import (
    XAPI_VERSION,
    ActivityTracker,
    build_actor,
    build_statement,
    build_verb,
    send_batch,
    send_statement,
    statements_url,
)

LRS = LrsConfig(endpoint="https://lrs.test/xapi/", key="k", secret="s")


def _path(lrs=None) -> LearningPath:
    return LearningPath(
        id="p1",
        title="Networking",
        nodes=[
            PathNode(id="n1", type="h5p", data={"title": "Quiz", "description": "Check"}),
            PathNode(id="n2", type="cmi5", data={"title": "Pkg", "activityId": "urn:pkg:1"}),
            PathNode(id="n3", type="mystery"),
        ],
        lrs_config=lrs,
    )


def _response(status_code=200, text="[\"id\"]"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


# =========================================================================
# Builders
# =========================================================================


class TestBuilders:
    def test_anonymous_actor(self):
        actor = build_actor(None)
        assert actor["name"] == "Anonymous Learner"
        assert actor["mbox"] == "mailto:anonymous@example.com"

    def test_named_actor(self):
        actor = build_actor(Learner(name="Ada", email="ada@example.org"))
        assert actor == {"objectType": "Agent", "name": "Ada", "mbox": "mailto:ada@example.org"}

    def test_known_and_unknown_verbs(self):
        assert build_verb("passed")["id"] == "http://adlnet.gov/expapi/verbs/passed"
        assert build_verb("waived")["id"] == "https://w3id.org/xapi/adl/verbs/waived"
        assert build_verb("urn:custom")["id"] == "urn:custom"

    def test_node_statement(self):
        path = _path()
        st = build_statement(None, "launched", path, path.node("n1"), base_url="http://lp.test/")
        assert st["object"]["id"] == "http://lp.test/learning-paths/p1/nodes/n1"
        assert st["object"]["definition"]["type"].endswith("/interaction")
        assert st["object"]["definition"]["description"] == {"en-US": "Check"}
        assert st["context"]["contextActivities"]["grouping"][0]["definition"]["name"] == {
            "en-US": "Networking"
        }
        assert "result" not in st

    def test_explicit_activity_id(self):
        path = _path()
        st = build_statement(None, "launched", path, path.node("n2"))
        assert st["object"]["id"] == "urn:pkg:1"
        assert st["object"]["definition"]["type"].endswith("/module")

    def test_unmapped_type_is_lesson(self):
        path = _path()
        st = build_statement(None, "experienced", path, path.node("n3"))
        assert st["object"]["definition"]["type"].endswith("/lesson")
        assert st["object"]["definition"]["name"] == {"en-US": "mystery"}

    def test_result_and_extensions(self):
        path = _path()
        st = build_statement(
            None, "passed", path, path.node("n1"),
            result={"score": {"scaled": 0.9}}, extensions={"urn:x": 1},
        )
        assert st["result"] == {"score": {"scaled": 0.9}}
        assert st["context"]["extensions"] == {"urn:x": 1}

    def test_statements_url(self):
        assert statements_url("https://lrs.test/xapi") == "https://lrs.test/xapi/statements"
        assert statements_url("https://lrs.test/xapi/") == "https://lrs.test/xapi/statements"


# =========================================================================
# Transport
# =========================================================================


class TestSend:
    @patch("pathgraph.xapi.requests.post")
    def test_no_config_makes_no_request(self, mock_post):
        result = send_statement({"verb": {}}, None)
        assert result.stored is False
        assert result.reason == "No LRS configured"
        mock_post.assert_not_called()

    @patch("pathgraph.xapi.requests.post")
    def test_blank_endpoint_is_unconfigured(self, mock_post):
        result = send_statement({"verb": {}}, LrsConfig(endpoint=""))
        assert result.reason == "No LRS configured"
        mock_post.assert_not_called()

    @patch("pathgraph.xapi.requests.post")
    def test_post_shape(self, mock_post):
        mock_post.return_value = _response(200)
        result = send_statement({"verb": {"id": "x"}}, LRS, timeout=3)

        assert result.stored is True
        assert result.status_code == 200
        args, kwargs = mock_post.call_args
        assert args[0] == "https://lrs.test/xapi/statements"
        assert kwargs["json"] == {"verb": {"id": "x"}}
        assert kwargs["headers"]["X-Experience-API-Version"] == XAPI_VERSION
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert kwargs["auth"].username == "k"
        assert kwargs["auth"].password == "s"
        assert kwargs["timeout"] == 3

    @patch("pathgraph.xapi.requests.post")
    def test_http_error_is_a_value(self, mock_post):
        mock_post.return_value = _response(401, "unauthorized")
        result = send_statement({}, LRS)
        assert result.stored is False
        assert result.status_code == 401
        assert result.response == "unauthorized"

    @patch("pathgraph.xapi.requests.post")
    def test_transport_failure_never_raises(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        result = send_statement({}, LRS)
        assert result.stored is False
        assert result.reason == "refused"

    @patch("pathgraph.xapi.requests.post")
    def test_batch_posts_array(self, mock_post):
        mock_post.return_value = _response(200)
        send_batch([{"a": 1}, {"b": 2}], LRS)
        assert mock_post.call_args.kwargs["json"] == [{"a": 1}, {"b": 2}]

    def test_empty_batch(self):
        assert send_batch([], LRS).reason == "No statements to send"

    def test_to_dict_uses_wire_keys(self):
        with patch("pathgraph.xapi.requests.post", return_value=_response(204, "")):
            result = send_statement({}, LRS)
        assert result.to_dict() == {"stored": True, "statusCode": 204, "response": ""}


# =========================================================================
# Tracker
# =========================================================================


class TestTracker:
    @patch("pathgraph.xapi.requests.post")
    def test_immediate_delivery(self, mock_post):
        mock_post.return_value = _response(200)
        path = _path(LRS)
        tracker = ActivityTracker(path, immediate=True)
        tracker.record("launched", path.node("n1"))
        tracker.close(wait=True)
        assert mock_post.call_count == 1
        assert tracker.outbox == []
        assert len(tracker.sent) == 1

    @patch("pathgraph.xapi.requests.post")
    def test_flush_sends_one_batch(self, mock_post):
        mock_post.return_value = _response(200)
        path = _path(LRS)
        tracker = ActivityTracker(path)
        tracker.record("launched", path.node("n1"))
        tracker.record("completed", path.node("n1"), {"completion": True})
        assert mock_post.call_count == 0

        result = tracker.flush()
        assert result.stored is True
        assert mock_post.call_count == 1
        assert len(mock_post.call_args.kwargs["json"]) == 2
        assert tracker.flush() is None

    @patch("pathgraph.xapi.requests.post")
    def test_failed_delivery_is_dropped(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        path = _path(LRS)
        tracker = ActivityTracker(path, immediate=True)
        tracker.record("launched", path.node("n1"))
        tracker.close(wait=True)
        assert tracker.sent == []
        assert tracker.results[0].reason == "slow"
        assert len(tracker.recorded) == 1

    def test_disabled_without_config(self):
        assert ActivityTracker(_path()).enabled is False
        assert ActivityTracker(_path(LRS)).enabled is True

    @patch("pathgraph.xapi.requests.post")
    def test_record_does_not_wait_for_lrs(self, mock_post):
        release = threading.Event()
        mock_post.side_effect = lambda *a, **kw: release.wait(5) and _response(200)
        path = _path(LRS)
        tracker = ActivityTracker(path, immediate=True)

        started = time.monotonic()
        for _ in range(3):
            tracker.record("experienced", path.node("n1"))
        assert time.monotonic() - started < 0.5
        assert tracker.sent == []

        release.set()
        tracker.close(wait=True)
        assert mock_post.call_count == 3
        assert len(tracker.sent) == 3

    @patch("pathgraph.xapi.requests.post")
    def test_close_hands_over_outbox(self, mock_post):
        mock_post.return_value = _response(200)
        path = _path(LRS)
        tracker = ActivityTracker(path)
        tracker.record("launched", path.node("n1"))
        tracker.record("completed", path.node("n1"))
        tracker.close(wait=True)
        assert tracker.outbox == []
        assert mock_post.call_count == 1
        assert tracker.sent == tracker.recorded

    @patch("pathgraph.xapi.requests.post")
    def test_record_after_close_is_kept_not_sent(self, mock_post):
        path = _path(LRS)
        tracker = ActivityTracker(path, immediate=True)
        tracker.close(wait=True)
        tracker.record("launched", path.node("n1"))
        assert tracker.flush() is None
        assert len(tracker.outbox) == 1
        mock_post.assert_not_called()
