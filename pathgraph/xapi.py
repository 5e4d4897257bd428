"""
xAPI statement builder and record-store (LRS) client.

Statements follow the ADL vocabulary; every node statement carries the
owning learning path as a grouping context activity. Delivery is
best-effort and runs off the caller's thread: every outcome, including
transport failures, comes back as a :class:`SendResult` and nothing is
retried.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

import requests
from requests.auth import HTTPBasicAuth

from pathgraph.models import LearningPath, Learner, LrsConfig, PathNode, SendResult
from pathgraph.utils import utc_now_iso

logger = logging.getLogger(__name__)

XAPI_VERSION = "1.0.3"
NO_LRS_REASON = "No LRS configured"

_ADL_VERB = "http://adlnet.gov/expapi/verbs/"

VERBS: Dict[str, Dict[str, Any]] = {
    name: {"id": _ADL_VERB + name, "display": {"en-US": name}}
    for name in (
        "launched", "initialized", "completed", "passed", "failed",
        "attempted", "experienced", "progressed", "terminated", "satisfied",
    )
}
VERBS["waived"] = {
    "id": "https://w3id.org/xapi/adl/verbs/waived",
    "display": {"en-US": "waived"},
}

_ADL_ACTIVITY = "http://adlnet.gov/expapi/activities/"

ACTIVITY_TYPES: Dict[str, str] = {
    name: _ADL_ACTIVITY + name
    for name in (
        "course", "module", "lesson", "assessment",
        "interaction", "media", "simulation", "link",
    )
}

NODE_ACTIVITY_MAP: Dict[str, str] = {
    "theory": ACTIVITY_TYPES["lesson"],
    "guidedLab": ACTIVITY_TYPES["simulation"],
    "wiki": ACTIVITY_TYPES["lesson"],
    "url": ACTIVITY_TYPES["link"],
    "h5p": ACTIVITY_TYPES["interaction"],
    "cmi5": ACTIVITY_TYPES["module"],
    "scorm": ACTIVITY_TYPES["module"],
}

Statement = Dict[str, Any]


# =========================================================================
# Statement builders
# =========================================================================


def build_actor(learner: Optional[Learner] = None) -> Dict[str, Any]:
    learner = learner or Learner()
    return {
        "objectType": "Agent",
        "name": learner.name or "Anonymous Learner",
        "mbox": f"mailto:{learner.email}" if learner.email else "mailto:anonymous@example.com",
    }


def build_verb(verb: str) -> Dict[str, Any]:
    """Known ADL verb, or a pass-through ``{id, display}`` for anything else."""
    return VERBS.get(verb) or {"id": verb, "display": {"en-US": verb}}


def path_activity_id(base_url: str, path_id: Optional[str]) -> str:
    return f"{base_url.rstrip('/')}/learning-paths/{path_id}"


def build_activity(base_url: str, path: LearningPath, node: PathNode) -> Dict[str, Any]:
    """Activity object for *node*.

    The id is the node's explicit ``activityId`` when set, otherwise a URL
    scoped to the path and node.
    """
    activity_id = node.data.get("activityId") or (
        f"{path_activity_id(base_url, path.id)}/nodes/{node.id}"
    )
    definition: Dict[str, Any] = {
        "type": NODE_ACTIVITY_MAP.get(node.type, ACTIVITY_TYPES["lesson"]),
        "name": {"en-US": node.data.get("title") or node.type},
    }
    if node.data.get("description"):
        definition["description"] = {"en-US": node.data["description"]}
    return {"objectType": "Activity", "id": activity_id, "definition": definition}


def build_path_activity(base_url: str, path: LearningPath) -> Dict[str, Any]:
    return {
        "objectType": "Activity",
        "id": path_activity_id(base_url, path.id),
        "definition": {
            "type": ACTIVITY_TYPES["course"],
            "name": {"en-US": path.title},
        },
    }


def build_path_context(base_url: str, path: LearningPath) -> Dict[str, Any]:
    return {"contextActivities": {"grouping": [build_path_activity(base_url, path)]}}


def build_statement(
    learner: Optional[Learner],
    verb: str,
    path: LearningPath,
    node: Optional[PathNode] = None,
    result: Optional[Dict[str, Any]] = None,
    extensions: Optional[Dict[str, Any]] = None,
    base_url: str = "http://localhost:8080",
) -> Statement:
    """Build one xAPI statement.

    With *node* ``None`` the statement is about the whole path (object is
    the course activity, no grouping context).
    """
    if node is not None:
        obj = build_activity(base_url, path, node)
        context: Dict[str, Any] = build_path_context(base_url, path)
    else:
        obj = build_path_activity(base_url, path)
        context = {}

    statement: Statement = {
        "actor": build_actor(learner),
        "verb": build_verb(verb),
        "object": obj,
        "timestamp": utc_now_iso(),
    }
    if result:
        statement["result"] = result
    if extensions:
        context["extensions"] = extensions
    if context:
        statement["context"] = context
    return statement


# =========================================================================
# Transport
# =========================================================================


def statements_url(endpoint: str) -> str:
    return urljoin(endpoint.rstrip("/") + "/", "statements")


def _post(
    lrs_config: Optional[LrsConfig],
    body: Union[Statement, List[Statement]],
    timeout: float,
) -> SendResult:
    if lrs_config is None or not lrs_config.endpoint:
        return SendResult(stored=False, reason=NO_LRS_REASON)

    url = statements_url(lrs_config.endpoint)
    try:
        resp = requests.post(
            url,
            json=body,
            headers={
                "Content-Type": "application/json",
                "X-Experience-API-Version": XAPI_VERSION,
            },
            auth=HTTPBasicAuth(lrs_config.key or "", lrs_config.secret or ""),
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.warning("LRS delivery to %s failed: %s", url, exc)
        return SendResult(stored=False, reason=str(exc))

    stored = 200 <= resp.status_code < 300
    if not stored:
        logger.warning("LRS at %s answered %d.", url, resp.status_code)
    return SendResult(stored=stored, status_code=resp.status_code, response=resp.text)


def send_statement(
    statement: Statement, lrs_config: Optional[LrsConfig], timeout: float = 10.0,
) -> SendResult:
    """POST one statement to ``<endpoint>/statements``. Never raises."""
    return _post(lrs_config, statement, timeout)


def send_batch(
    statements: List[Statement], lrs_config: Optional[LrsConfig], timeout: float = 10.0,
) -> SendResult:
    """POST a batch of statements as one JSON array. Never raises."""
    if not statements:
        return SendResult(stored=False, reason="No statements to send")
    return _post(lrs_config, statements, timeout)


# =========================================================================
# Tracker
# =========================================================================


class ActivityTracker:
    """Turns traversal events into statements and delivers them.

    Delivery runs on a single background worker thread, so a slow or
    unreachable LRS never holds up the caller; statements reach the LRS in
    the order they were handed over. With ``immediate=True`` each
    statement is sent as soon as it is recorded, otherwise it waits on
    :attr:`outbox` until :meth:`flush`. A failed delivery is logged, kept
    on :attr:`results` and dropped.
    """

    def __init__(
        self,
        path: LearningPath,
        learner: Optional[Learner] = None,
        base_url: str = "http://localhost:8080",
        lrs_config: Optional[LrsConfig] = None,
        immediate: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self.path = path
        self.learner = learner
        self.base_url = base_url
        self.lrs_config = lrs_config if lrs_config is not None else path.lrs_config
        self.immediate = immediate
        self.timeout = timeout
        self.recorded: List[Statement] = []
        self.outbox: List[Statement] = []
        self.sent: List[Statement] = []
        self.results: List[SendResult] = []
        self.closed = False
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="xapi-delivery")

    @property
    def enabled(self) -> bool:
        return bool(self.lrs_config and self.lrs_config.endpoint)

    def record(
        self,
        verb: str,
        node: Optional[PathNode] = None,
        result: Optional[Dict[str, Any]] = None,
        extensions: Optional[Dict[str, Any]] = None,
    ) -> Statement:
        """Build a statement for *node* (or the path when ``None``) and queue it."""
        statement = build_statement(
            self.learner, verb, self.path, node,
            result=result, extensions=extensions, base_url=self.base_url,
        )
        self.recorded.append(statement)
        logger.debug(
            "Recorded %s for %s.", verb, node.id if node is not None else f"path {self.path.id}",
        )
        if self.immediate and not self.closed:
            self._submit([statement])
        else:
            self.outbox.append(statement)
        return statement

    def flush(self, wait: bool = True) -> Optional[SendResult]:
        """Send everything queued as one batch.

        Returns ``None`` if nothing was queued, or when *wait* is false and
        the batch was only handed to the worker.
        """
        if not self.outbox or self.closed:
            return None
        batch, self.outbox = self.outbox, []
        future = self._submit(batch)
        return future.result() if wait else None

    def close(self, wait: bool = False) -> None:
        """Hand over whatever is queued and stop accepting deliveries.

        With *wait* false this returns at once; deliveries already handed
        over still run to completion on the worker. Calling it again with
        *wait* true joins the worker.
        """
        if not self.closed:
            self.flush(wait=False)
            self.closed = True
            logger.debug("Tracker for path %s closed.", self.path.id)
        self._executor.shutdown(wait=wait)

    def _submit(self, batch: List[Statement]) -> "Future[SendResult]":
        future = self._executor.submit(self._deliver, batch)
        future.add_done_callback(_log_worker_error)
        return future

    def _deliver(self, batch: List[Statement]) -> SendResult:
        # runs on the worker thread; results are recorded before the future resolves
        if len(batch) == 1:
            result = send_statement(batch[0], self.lrs_config, self.timeout)
        else:
            result = send_batch(batch, self.lrs_config, self.timeout)
        with self._lock:
            self.results.append(result)
            if result.stored:
                self.sent.extend(batch)
        if result.stored:
            logger.info("Delivered %d statement(s) to LRS.", len(batch))
        else:
            logger.info(
                "Dropped %d statement(s): %s",
                len(batch), result.reason or f"status {result.status_code}",
            )
        return result


def _log_worker_error(future: "Future[SendResult]") -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Statement delivery worker failed: %s", exc)
