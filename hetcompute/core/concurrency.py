"""
Cancel-on-failure fan-out/fan-in.

``invoke_all_cancel_on_failure`` submits N independent units to an executor
and gathers their results in submission order. The first failing unit, or
the expiry of the optional deadline, cancels every other unit of that call:
queued units are ``Future.cancel()``-ed so they never start, running units
see their cancel event set (``current_cancel_event()``) and are expected to
stop early. Cancellation never crosses calls, each call owns its own event.
"""

import concurrent.futures
import logging
import threading
from concurrent.futures import Executor, Future
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_THREAD_NAME_PREFIX = "concurrent-task"

_local = threading.local()
_NEVER_CANCELLED = threading.Event()


def current_cancel_event() -> threading.Event:
    """Cancel event of the fan-out unit running on this thread.

    Outside a fan-out unit this is an event that is never set.
    """
    return getattr(_local, 'cancel_event', None) or _NEVER_CANCELLED


def is_cancelled() -> bool:
    return current_cancel_event().is_set()


def _run_unit(unit: Callable[[], T], index: int, prefix: str,
              cancel_event: threading.Event) -> T:
    thread = threading.current_thread()
    original_name = thread.name
    previous_event = getattr(_local, 'cancel_event', None)
    thread.name = f"{prefix}-{index}"
    _local.cancel_event = cancel_event
    try:
        return unit()
    finally:
        _local.cancel_event = previous_event
        thread.name = original_name


def _cancel_all(futures: Sequence[Future], cancel_event: threading.Event) -> None:
    cancel_event.set()
    for future in futures:
        future.cancel()


def invoke_all_cancel_on_failure(executor: Executor,
                                 tasks: Sequence[Callable[[], T]],
                                 timeout: Optional[float] = None,
                                 thread_name_prefix: Optional[str] = DEFAULT_THREAD_NAME_PREFIX) -> List[T]:
    """
    Run ``tasks`` on ``executor`` and return their results in submission order.

    Args:
        executor: executor the units are submitted to
        tasks: zero-argument callables
        timeout: overall deadline in seconds, None waits indefinitely
        thread_name_prefix: units run under thread name ``prefix-index``

    Raises:
        The original exception of the first unit to fail, or
        ``concurrent.futures.TimeoutError`` when the deadline expires.
    """
    if not tasks:
        return []

    prefix = thread_name_prefix or DEFAULT_THREAD_NAME_PREFIX
    cancel_event = threading.Event()
    futures: List[Future] = []
    index_of = {}

    try:
        for index, unit in enumerate(tasks):
            future = executor.submit(_run_unit, unit, index, prefix, cancel_event)
            futures.append(future)
            index_of[future] = index
    except BaseException:
        _cancel_all(futures, cancel_event)
        raise

    results: List[Optional[T]] = [None] * len(futures)
    failure: Optional[BaseException] = None
    try:
        for finished in concurrent.futures.as_completed(futures, timeout=timeout):
            failure = finished.exception()
            if failure is not None:
                logger.debug("Unit %d of %d failed, cancelling siblings: %s",
                             index_of[finished], len(futures), failure)
                break
            results[index_of[finished]] = finished.result()
    except concurrent.futures.TimeoutError:
        _cancel_all(futures, cancel_event)
        raise concurrent.futures.TimeoutError(
            f"Timeout after {timeout}s waiting for {len(futures)} concurrent tasks") from None
    except BaseException:
        _cancel_all(futures, cancel_event)
        raise

    if failure is not None:
        _cancel_all(futures, cancel_event)
        raise failure
    return results


class ThreadPerTaskExecutor(Executor):
    """Executor that starts one short-lived daemon thread per submitted unit"""

    def __init__(self, thread_name_prefix: str = "task"):
        self._prefix = thread_name_prefix
        self._threads: Dict[threading.Thread, Future] = {}
        self._lock = threading.Lock()
        self._shutdown = False
        self._counter = 0

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()

        def run():
            try:
                if not future.set_running_or_notify_cancel():
                    return
                try:
                    result = fn(*args, **kwargs)
                except BaseException as exc:
                    future.set_exception(exc)
                else:
                    future.set_result(result)
            finally:
                with self._lock:
                    self._threads.pop(threading.current_thread(), None)

        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot schedule new futures after shutdown")
            self._counter += 1
            thread = threading.Thread(target=run, name=f"{self._prefix}-{self._counter}", daemon=True)
            self._threads[thread] = future
            thread.start()
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        with self._lock:
            self._shutdown = True
            pending = dict(self._threads)
        if cancel_futures:
            # units whose thread has not reached them yet never run
            for future in pending.values():
                future.cancel()
        if wait:
            for thread in pending:
                thread.join()
