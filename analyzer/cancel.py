"""analyzer/cancel.py — cooperative cancellation for audit runs."""
import threading


class AuditCancelled(Exception):
    """Raised when a caller cancels an audit run. Never retried."""


class CancelToken:
    """
    Cancellation flag shared between a running audit and its caller.

    `wait()` is the only sleep the audit loop uses (tile cooldown and retry
    backoff), so a cancel request interrupts a pending delay immediately.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AuditCancelled()

    def wait(self, seconds: float) -> None:
        """Sleep up to `seconds`; raise AuditCancelled as soon as cancelled."""
        if seconds and seconds > 0:
            self._event.wait(timeout=seconds)
        self.raise_if_cancelled()
