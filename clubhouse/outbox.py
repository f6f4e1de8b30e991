import logging
import queue
import threading
from typing import Callable, List, Optional

from matchday.errors import SyncWarning
from matchday.events import Event

from .remote_sync import RemoteSync

logger = logging.getLogger(__name__)

_STOP = object()


class SyncOutbox:
    """
    Queue of committed work waiting to leave the process.

    Coordinators enqueue after their local save, so nothing here can roll
    a mutation back. Each event is pushed to the backing store and then
    fanned out through the publisher. Deferred tasks (reminder updates) run
    on the same worker, in commit order. A failed push becomes a
    SyncWarning handed to every warning listener. In inline mode the work
    runs on the caller's thread and the warning is also returned to the
    caller.
    """

    def __init__(self, remote: RemoteSync, inline: bool = False, publisher=None):
        self.remote = remote
        self.inline = inline
        self.publisher = publisher
        self._queue: "queue.Queue" = queue.Queue()
        self._listeners: List[Callable[[SyncWarning], None]] = []
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()

    def add_warning_listener(self, listener: Callable[[SyncWarning], None]):
        self._listeners.append(listener)

    def enqueue(self, event: Event) -> Optional[SyncWarning]:
        if self.inline:
            return self._dispatch(event)

        self._ensure_worker()
        self._queue.put(event)
        return None

    def defer(self, task: Callable[[], None]):
        """Run an advisory side effect after commit. Failures are logged."""
        if self.inline:
            self._run_task(task)
            return

        self._ensure_worker()
        self._queue.put(task)

    def _ensure_worker(self):
        with self._worker_lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name='sync-outbox', daemon=True)
                self._worker.start()

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if isinstance(item, Event):
                    self._dispatch(item)
                else:
                    self._run_task(item)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Event) -> Optional[SyncWarning]:
        warning = None
        try:
            self.remote.push(event)
        except Exception as e:
            warning = SyncWarning(event.type.value, event.aggregate_id, e)
            logger.warning(f"Sync push failed for {event.aggregate_id}: {warning.message}")
            for listener in self._listeners:
                listener(warning)

        if self.publisher is not None:
            self.publisher.publish(event)
        return warning

    @staticmethod
    def _run_task(task: Callable[[], None]):
        try:
            task()
        except Exception:
            logger.exception("Deferred outbox task failed")

    def flush(self):
        """Block until every queued item has been attempted."""
        if self._worker is not None:
            self._queue.join()

    def stop(self, timeout: float = 5.0):
        if self._worker is None:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None
