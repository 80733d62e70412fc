"""
analyzer/runner.py — single-worker execution of audit runs.

An AuditRunner drives one ScreenAuditor generator on its own worker thread
and hands every snapshot to the consumer through a queue. The terminal
snapshot is also handed to an optional `on_finish` hook on the worker, so a
run settles (and stores its results) whether or not anyone is reading. The
RunRegistry keeps at most one in-flight run per session.
"""
import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterator, Optional

from analyzer import AuditContext, TERMINAL_STATES, ScreenAuditor
from analyzer.cancel import CancelToken

logger = logging.getLogger(__name__)

_SENTINEL = object()


class AuditRunner:
    """Producer side: one worker thread per run, snapshots through a queue."""

    def __init__(self, auditor: ScreenAuditor, source, context: AuditContext,
                 token: Optional[CancelToken] = None,
                 on_finish: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.auditor = auditor
        self.source = source
        self.context = context
        self.token = token or CancelToken()
        self.on_finish = on_finish
        self.settled = threading.Event()
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread = threading.Thread(target=self._work, name="audit-runner", daemon=True)

    def start(self) -> "AuditRunner":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.token.cancel()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def snapshots(self) -> Iterator[Dict[str, Any]]:
        """Consumer side: yield snapshots until the run reaches a terminal state."""
        while True:
            item = self._queue.get()
            if item is _SENTINEL:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def wait_settled(self, timeout: Optional[float] = None) -> bool:
        """Block until the run has finished and its `on_finish` hook returned."""
        return self.settled.wait(timeout)

    def _work(self) -> None:
        last = None
        try:
            for snapshot in self.auditor.run(self.source, self.context, self.token):
                last = snapshot
                self._queue.put(snapshot)
        except Exception as exc:
            logger.error("Audit worker crashed: %s", exc, exc_info=True)
            self._queue.put(exc)
        finally:
            if last is not None and self.on_finish is not None and is_terminal(last):
                self._finish(last)
            self.settled.set()
            self._queue.put(_SENTINEL)

    def _finish(self, snapshot: Dict[str, Any]) -> None:
        try:
            self.on_finish(snapshot)
        except Exception as exc:
            logger.error("Audit finish hook failed: %s", exc, exc_info=True)


class RunRegistry:
    """Tracks the in-flight run of each session."""

    def __init__(self):
        self._runs: Dict[str, AuditRunner] = {}
        self._lock = threading.Lock()

    def start(self, session_id: str, runner: AuditRunner) -> AuditRunner:
        with self._lock:
            previous = self._runs.get(session_id)
            if previous is not None and previous.running:
                logger.info("Cancelling in-flight audit for session %s", session_id)
                previous.cancel()
            self._runs[session_id] = runner
        return runner.start()

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; True if a run was in flight."""
        with self._lock:
            runner = self._runs.get(session_id)
        if runner is None or not runner.running:
            return False
        runner.cancel()
        return True

    def stop(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """
        Cancel the session's run and wait until it has settled, so its
        results are stored before anything reads the session again.
        Returns False if the run was still busy after `timeout`.
        """
        with self._lock:
            runner = self._runs.get(session_id)
        if runner is None:
            return True
        runner.cancel()
        return runner.wait_settled(timeout)

    def finish(self, session_id: str, runner: AuditRunner) -> None:
        with self._lock:
            if self._runs.get(session_id) is runner:
                del self._runs[session_id]

    def get(self, session_id: str) -> Optional[AuditRunner]:
        with self._lock:
            return self._runs.get(session_id)


def is_terminal(snapshot: Dict[str, Any]) -> bool:
    return snapshot.get("state") in TERMINAL_STATES
