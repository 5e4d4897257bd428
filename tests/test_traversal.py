"""
pytest suite for linearization and the learner traversal session.

Statements are captured by an :class:`ActivityTracker`. Delivery tests patch
``requests.post``, so nothing touches the network.
"""

import os
import sys
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from pathgraph.models import Connection, LearningPath, LrsConfig, PathNode
from pathgraph.traversal import TraversalEngine, build_play_order
from pathgraph.xapi import ActivityTracker


# =========================================================================
# Helpers
# =========================================================================


def _conn(a, b, from_port="next", to_port="prev"):
    return Connection(from_node=a, from_port=from_port, to_node=b, to_port=to_port)


def _scenario_path() -> LearningPath:
    return LearningPath(
        id="p1",
        title="Scenario",
        nodes=[
            PathNode(id="s", type="start"),
            PathNode(id="t", type="theory", data={"title": "Intro"}),
            PathNode(id="e", type="end"),
        ],
        connections=[_conn("s", "t"), _conn("t", "e")],
    )


def _branch_path() -> LearningPath:
    return LearningPath(
        id="p2",
        nodes=[
            PathNode(id="s", type="start"),
            PathNode(id="b", type="branch", data={"pathALabel": "Easy", "pathBLabel": "Hard"}),
            PathNode(id="a1", type="theory", data={"title": "Easy road"}),
            PathNode(id="b1", type="guidedLab", data={"title": "Hard road"}),
            PathNode(id="e", type="end"),
        ],
        connections=[
            _conn("s", "b"),
            _conn("b", "a1", from_port="pathA"),
            _conn("b", "b1", from_port="pathB"),
            _conn("a1", "e"),
        ],
    )


class _Clock:
    """Deterministic clock advancing 90 seconds per call."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=90)
        return current


def _engine(path):
    tracker = ActivityTracker(path, base_url="http://lp.test")
    return TraversalEngine(path, tracker=tracker, clock=_Clock()), tracker


def _trail(tracker):
    """(verb, object id suffix) for every recorded statement."""
    return [
        (st["verb"]["display"]["en-US"], st["object"]["id"].rsplit("/", 1)[-1])
        for st in tracker.recorded
    ]


# =========================================================================
# Linearization
# =========================================================================


class TestPlayOrder:
    def test_scenario_order(self):
        assert [n.id for n in build_play_order(_scenario_path())] == ["t", "e"]

    def test_branch_follows_first_output(self):
        assert [n.id for n in build_play_order(_branch_path())] == ["b", "a1", "e"]

    def test_cycle_truncates(self):
        path = LearningPath(
            nodes=[
                PathNode(id="s", type="start"),
                PathNode(id="a", type="theory"),
                PathNode(id="b", type="wiki"),
            ],
            connections=[_conn("s", "a"), _conn("a", "b"), _conn("b", "a")],
        )
        assert [n.id for n in build_play_order(path)] == ["a", "b"]

    def test_no_start_uses_document_order(self):
        path = LearningPath(nodes=[
            PathNode(id="w", type="wiki"),
            PathNode(id="e", type="end"),
            PathNode(id="t", type="theory"),
        ])
        assert [n.id for n in build_play_order(path)] == ["w", "t"]

    def test_unconnected_start_falls_back(self):
        path = LearningPath(nodes=[
            PathNode(id="s", type="start"),
            PathNode(id="t", type="theory"),
            PathNode(id="e", type="end"),
        ])
        assert [n.id for n in build_play_order(path)] == ["t", "e"]


# =========================================================================
# Session
# =========================================================================


class TestScenario:
    def test_statement_trail(self):
        engine, tracker = _engine(_scenario_path())
        engine.start()
        assert _trail(tracker) == [("launched", "t")]

        engine.next()
        assert _trail(tracker) == [
            ("launched", "t"),
            ("completed", "t"),
            ("launched", "e"),
            ("completed", "e"),
            ("completed", "p1"),
        ]
        assert engine.finished is True
        assert engine.progress() == 1.0

    def test_node_statement_shape(self):
        engine, tracker = _engine(_scenario_path())
        engine.start()
        launched = tracker.recorded[0]
        assert launched["object"]["id"] == "http://lp.test/learning-paths/p1/nodes/t"
        assert launched["object"]["definition"]["type"].endswith("/lesson")
        grouping = launched["context"]["contextActivities"]["grouping"]
        assert grouping[0]["id"] == "http://lp.test/learning-paths/p1"

    def test_completed_carries_duration(self):
        engine, tracker = _engine(_scenario_path())
        engine.start()
        engine.next()
        completed_t = tracker.recorded[1]
        assert completed_t["result"] == {"completion": True, "duration": "PT1M30S"}

    def test_path_level_statement(self):
        engine, tracker = _engine(_scenario_path())
        engine.start()
        engine.next()
        final = tracker.recorded[-1]
        assert final["object"]["definition"]["type"].endswith("/course")
        assert "context" not in final

    def test_statements_queue_without_lrs(self):
        engine, tracker = _engine(_scenario_path())
        engine.start()
        engine.next()
        tracker.close(wait=True)
        assert tracker.outbox == []
        assert len(tracker.results) == 1
        assert tracker.results[0].reason == "No LRS configured"
        assert tracker.sent == []


class TestNavigation:
    def test_states(self):
        engine, _ = _engine(_scenario_path())
        assert engine.state("t").status == "pending"
        engine.start()
        assert engine.state("t").status == "active"
        assert engine.progress() == 0.0

    def test_progress_mid_session(self):
        path = LearningPath(
            id="m",
            nodes=[
                PathNode(id="s", type="start"),
                PathNode(id="t", type="theory"),
                PathNode(id="w", type="wiki"),
            ],
            connections=[_conn("s", "t"), _conn("t", "w")],
        )
        engine, _ = _engine(path)
        engine.start()
        engine.next()
        assert engine.current.id == "w"
        assert engine.progress() == 0.5

    def test_prev_completes_active_and_revisit_keeps_completed(self):
        engine, tracker = _engine(_branch_path())
        engine.start()
        engine.next()
        assert engine.current.id == "a1"
        engine.prev()
        assert engine.current.id == "b"
        assert engine.state("a1").status == "completed"
        assert engine.state("b").status == "completed"
        assert _trail(tracker)[-1] == ("launched", "b")

    def test_navigate_out_of_range(self):
        engine, _ = _engine(_scenario_path())
        assert engine.navigate_to(5) is False
        assert engine.current is None

    def test_pass_gate(self):
        path = LearningPath(
            id="g",
            nodes=[
                PathNode(id="s", type="start"),
                PathNode(id="g1", type="gate"),
                PathNode(id="t", type="theory"),
            ],
            connections=[_conn("s", "g1"), _conn("g1", "t", from_port="pass")],
        )
        engine, _ = _engine(path)
        engine.start()
        engine.pass_gate()
        assert engine.current.id == "t"
        assert engine.state("g1").status == "completed"

    def test_close_discards_state(self):
        engine, _ = _engine(_scenario_path())
        engine.start()
        engine.close()
        assert engine.states == {}
        assert engine.current is None


class TestBranch:
    def test_choice_inside_order(self):
        engine, _ = _engine(_branch_path())
        engine.start()
        engine.choose_branch("pathA")
        assert engine.current.id == "a1"
        assert engine.state("b").status == "completed"

    def test_choice_outside_order_reroutes(self):
        engine, _ = _engine(_branch_path())
        engine.start()
        engine.choose_branch("pathB")
        assert engine.current.id == "b1"
        assert engine.order_ids == ["b", "b1"]
        assert engine.state("b1").status == "active"
        assert engine.progress() == 0.5

    def test_unconnected_choice_falls_back(self):
        path = _branch_path()
        path.connections = [c for c in path.connections if c.from_port != "pathB"]
        engine, _ = _engine(path)
        engine.start()
        engine.choose_branch("pathB")
        assert engine.current.id == "a1"

    def test_branch_view(self):
        engine, _ = _engine(_branch_path())
        engine.start()
        view = engine.view()
        assert view.title == "Choose your path"
        assert view.choices == [("pathA", "Easy"), ("pathB", "Hard")]


class TestViews:
    @pytest.mark.parametrize("index,title", [(0, "Intro"), (1, "End")])
    def test_titles(self, index, title):
        engine, _ = _engine(_scenario_path())
        assert engine.view(index).title == title

    def test_end_message(self):
        engine, _ = _engine(_scenario_path())
        assert engine.view(1).completion_message.startswith("Congratulations")

    def test_outline(self):
        engine, _ = _engine(_scenario_path())
        assert [v.node_id for v in engine.outline()] == ["t", "e"]


# =========================================================================
# Statement delivery
# =========================================================================


def _lrs_path() -> LearningPath:
    path = _scenario_path()
    path.lrs_config = LrsConfig(endpoint="https://lrs.test/xapi", key="k", secret="s")
    return path


class TestDelivery:
    @patch("pathgraph.xapi.requests.post")
    def test_session_end_sends_every_statement(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200, text="[]")
        path = _lrs_path()
        tracker = ActivityTracker(path)
        engine = TraversalEngine(path, tracker=tracker, clock=_Clock())
        engine.start()
        engine.next()
        engine.close()
        tracker.close(wait=True)

        posted = [st for call in mock_post.call_args_list for st in call.kwargs["json"]]
        assert len(posted) == 5
        assert tracker.outbox == []
        assert tracker.sent == tracker.recorded

    @patch("pathgraph.xapi.requests.post")
    def test_close_before_end_sends_queued(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200, text="[]")
        path = _lrs_path()
        tracker = ActivityTracker(path)
        engine = TraversalEngine(path, tracker=tracker, clock=_Clock())
        engine.start()
        assert mock_post.call_count == 0
        engine.close()
        tracker.close(wait=True)
        assert mock_post.call_count == 1
        assert len(tracker.sent) == 1

    @patch("pathgraph.xapi.requests.post")
    def test_slow_lrs_does_not_block_navigation(self, mock_post):
        def slow_post(*args, **kwargs):
            time.sleep(0.3)
            return MagicMock(status_code=200, text="[]")

        mock_post.side_effect = slow_post
        path = _lrs_path()
        tracker = ActivityTracker(path, immediate=True)
        engine = TraversalEngine(path, tracker=tracker, clock=_Clock())

        started = time.monotonic()
        engine.start()
        engine.next()
        assert time.monotonic() - started < 0.2
        assert engine.finished is True

        tracker.close(wait=True)
        assert mock_post.call_count == 5
        assert len(tracker.sent) == 5

    @patch("pathgraph.xapi.requests.post")
    def test_unreachable_lrs_does_not_interrupt(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        path = _lrs_path()
        tracker = ActivityTracker(path, immediate=True)
        engine = TraversalEngine(path, tracker=tracker, clock=_Clock())
        engine.start()
        engine.next()
        assert engine.finished is True

        tracker.close(wait=True)
        assert tracker.sent == []
        assert len(tracker.results) == 5
        assert all(r.reason == "refused" for r in tracker.results)
