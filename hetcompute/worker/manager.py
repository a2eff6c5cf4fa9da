"""
Worker lifecycle registry.

Maps worker id to a handle holding its start/stop callbacks, running flag
and capacity hint. Registry updates rely on atomic dict primitives
(``setdefault``/``pop``); start and stop are serialized by a lock on each
handle, so one slow worker never blocks another. Start/stop failures are
logged and reported as ``False``, never raised.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ..errors import WorkerRegistrationError

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


@dataclass(frozen=True)
class WorkerInfo:
    """Immutable snapshot of one worker"""
    worker_id: str
    running: bool
    capacity: int
    last_started: Optional[datetime]


class WorkerHandle:
    """Mutable lifecycle state of one registered worker"""

    def __init__(self, worker_id: str, start_callback: Callback, stop_callback: Callback,
                 initial_capacity: int):
        self.worker_id = worker_id
        self._start_callback = start_callback
        self._stop_callback = stop_callback
        self._capacity = initial_capacity
        self._capacity_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self.running = False
        self.last_started: Optional[datetime] = None

    @property
    def capacity(self) -> int:
        with self._capacity_lock:
            return self._capacity

    def set_capacity(self, capacity: int) -> None:
        with self._capacity_lock:
            self._capacity = capacity

    def start(self) -> bool:
        with self._lifecycle_lock:
            if self.running:
                return True
            try:
                self._start_callback()
            except Exception as e:
                logger.error("Failed to start worker %s: %s", self.worker_id, e, exc_info=True)
                return False
            self.running = True
            self.last_started = datetime.now(timezone.utc)
            logger.info("Started worker %s", self.worker_id)
            return True

    def stop(self, force: bool = False) -> bool:
        """Stop the worker; ``force`` marks it stopped even if the callback fails"""
        with self._lifecycle_lock:
            if not self.running:
                return True
            try:
                self._stop_callback()
            except Exception as e:
                logger.error("Failed to stop worker %s: %s", self.worker_id, e, exc_info=True)
                if force:
                    self.running = False
                return False
            self.running = False
            logger.info("Stopped worker %s", self.worker_id)
            return True

    def info(self) -> WorkerInfo:
        with self._lifecycle_lock:
            running = self.running
            last_started = self.last_started
        return WorkerInfo(self.worker_id, running, self.capacity, last_started)


class WorkerManager:
    """Registry of worker handles, owned by whoever orchestrates the workers"""

    def __init__(self):
        self._workers: Dict[str, WorkerHandle] = {}

    def register_worker(self, worker_id: str, start_callback: Callback, stop_callback: Callback,
                        initial_capacity: int = 1) -> WorkerHandle:
        if not worker_id:
            raise WorkerRegistrationError("worker_id must not be empty")
        if not callable(start_callback):
            raise WorkerRegistrationError("start_callback must be callable")
        if not callable(stop_callback):
            raise WorkerRegistrationError("stop_callback must be callable")
        if initial_capacity is None or initial_capacity < 0:
            raise WorkerRegistrationError("initial_capacity must be >= 0")

        handle = WorkerHandle(worker_id, start_callback, stop_callback, initial_capacity)
        previous = self._workers.setdefault(worker_id, handle)
        if previous is not handle:
            raise WorkerRegistrationError(f"Worker already registered with id: {worker_id}")

        logger.info("Registered worker %s capacity=%d", worker_id, initial_capacity)
        return handle

    def start_worker(self, worker_id: str) -> bool:
        handle = self._workers.get(worker_id)
        if handle is None:
            logger.warning("start_worker: unknown worker %s", worker_id)
            return False
        return handle.start()

    def stop_worker(self, worker_id: str) -> bool:
        handle = self._workers.get(worker_id)
        if handle is None:
            logger.warning("stop_worker: unknown worker %s", worker_id)
            return False
        return handle.stop()

    def unregister_worker(self, worker_id: str) -> bool:
        handle = self._workers.pop(worker_id, None)
        if handle is None:
            return False
        if not handle.stop(force=True):
            logger.warning("Worker %s did not stop cleanly during unregister", worker_id)
        logger.info("Unregistered worker %s", worker_id)
        return True

    def scale_worker(self, worker_id: str, capacity: int) -> bool:
        handle = self._workers.get(worker_id)
        if handle is None:
            logger.warning("scale_worker: unknown worker %s", worker_id)
            return False
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        handle.set_capacity(capacity)
        logger.info("Scaled worker %s to capacity=%d", worker_id, capacity)
        return True

    def get_worker_statuses(self) -> Dict[str, WorkerInfo]:
        return {worker_id: handle.info() for worker_id, handle in list(self._workers.items())}

    def __contains__(self, worker_id: str) -> bool:
        return worker_id in self._workers

    def __len__(self) -> int:
        return len(self._workers)

    def shutdown(self) -> None:
        handles = list(self._workers.items())
        logger.info("WorkerManager shutting down %d workers", len(handles))
        for worker_id, handle in handles:
            if not handle.stop(force=True):
                logger.warning("Error stopping worker %s during shutdown", worker_id)
        self._workers.clear()
