"""
Compute worker: pulls ComputeTasks, runs them on one engine and emits
exactly one ComputeResult per task.

The transport is external. Tasks arrive through ``submit`` (an in-process
queue drained by the worker thread) or a direct ``process`` call; results
go to ``result_sink`` or, without one, to the ``results`` queue. Every
exception raised while running a task becomes a failed result.

Operation tags and their operands:

==============================  ========================================
matrix_vector_multiply          matrix, vector
blocked_matrix_vector_multiply  matrix, vector, cache-blocked on the CPU
dot_product                     vector, batch_inputs[0]
cosine_similarity               vector, batch_inputs[0]
elementwise_<op>                vector (+ batch_inputs[0] for binary ops)
batch_<op>                      batch_inputs, unary op applied per vector
ml_inference                    vector, model_path
fft                             vector (real signal)
inverse_fft                     batch_inputs[0] real, batch_inputs[1] imag
solve_linear_system             matrix, vector
statistics                      vector (+ batch_inputs[0] for covariance)
==============================  ========================================
"""

import logging
import queue
import threading
import time
import uuid
from typing import Any, Callable, Dict, Optional

from ..core.contracts import ComputeResult, ComputeTask, Operation
from ..core.engine import ComputeEngine, apply_operation, resolve_operation
from ..core.vectors import DenseVector
from ..errors import UnsupportedOperationError
from ..science import fft, linear_algebra, statistics
from .manager import WorkerManager

logger = logging.getLogger(__name__)

ResultSink = Callable[[ComputeResult], None]

_STOP = object()


def _require(task: ComputeTask, name: str) -> Any:
    value = getattr(task, name)
    if value is None:
        raise ValueError(f"Task {task.task_id} ({task.operation}) requires '{name}'")
    return value


def _second_operand(task: ComputeTask) -> DenseVector:
    batch = _require(task, 'batch_inputs')
    return batch[0]


class ComputeWorker:
    """Owns one engine and turns tasks into results"""

    def __init__(self, engine: ComputeEngine, result_sink: Optional[ResultSink] = None,
                 worker_id: Optional[str] = None, task_timeout: Optional[float] = None,
                 max_queue_size: int = 0):
        self.engine = engine
        self.worker_id = worker_id or f"{engine.backend.name.lower().replace('_', '-')}-worker-{uuid.uuid4().hex[:8]}"
        self.result_sink = result_sink
        self.task_timeout = task_timeout
        self.results: "queue.Queue[ComputeResult]" = queue.Queue()
        self._tasks: "queue.Queue[Any]" = queue.Queue(max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._count_lock = threading.Lock()
        self.processed = 0

        self._handlers: Dict[str, Callable[[ComputeTask], Any]] = {
            'matrix_vector_multiply': self._matrix_vector_multiply,
            'blocked_matrix_vector_multiply': self._blocked_matrix_vector_multiply,
            'dot_product': self._dot_product,
            'cosine_similarity': self._cosine_similarity,
            'ml_inference': self._ml_inference,
            'fft': self._fft,
            'inverse_fft': self._inverse_fft,
            'solve_linear_system': self._solve_linear_system,
            'statistics': self._statistics,
        }

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name=self.worker_id, daemon=True)
            self._thread.start()
        logger.info("Worker %s started on %s", self.worker_id, self.engine.device_info)

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._tasks.put(_STOP)
            thread.join(timeout)
            if thread.is_alive():
                raise TimeoutError(f"Worker {self.worker_id} did not stop within {timeout}s")
            self._thread = None
        logger.info("Worker %s stopped after %d tasks", self.worker_id, self.processed)

    def register_with(self, manager: WorkerManager, capacity: Optional[int] = None) -> None:
        manager.register_worker(self.worker_id, self.start,
                                lambda: self.stop(self.engine.config.shutdown_timeout),
                                capacity if capacity is not None else 1)

    def submit(self, task: ComputeTask, timeout: Optional[float] = None) -> None:
        self._tasks.put(task, timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._tasks.get()
            try:
                if item is _STOP:
                    return
                try:
                    result = self.process(item)
                except Exception as e:
                    logger.error("Worker %s dropped unprocessable item %r: %s",
                                 self.worker_id, item, e, exc_info=True)
                    continue
                self._publish(result)
            finally:
                self._tasks.task_done()

    def _publish(self, result: ComputeResult) -> None:
        if self.result_sink is None:
            self.results.put(result)
            return
        try:
            self.result_sink(result)
        except Exception as e:
            logger.error("Failed to publish result for task %s: %s", result.task_id, e, exc_info=True)

    # Task execution

    def process(self, task: ComputeTask) -> ComputeResult:
        start = time.perf_counter_ns()
        try:
            data = self._dispatch(task)
        except Exception as e:
            duration = time.perf_counter_ns() - start
            logger.error("Failed to execute task %s (%s): %s", task.task_id, task.operation, e)
            return ComputeResult.failure(task.task_id, str(e) or type(e).__name__,
                                         execution_time_nanos=duration,
                                         device_info=self.engine.device_info)
        finally:
            with self._count_lock:
                self.processed += 1

        duration = time.perf_counter_ns() - start
        logger.info("Completed task %s in %.3f ms", task.task_id, duration / 1e6)
        return (ComputeResult.builder()
                .task_id(task.task_id)
                .success(True)
                .data(data)
                .execution_time_nanos(duration)
                .device_info(self.engine.device_info)
                .build())

    def _dispatch(self, task: ComputeTask) -> Any:
        operation = task.operation
        handler = self._handlers.get(operation)
        if handler is not None:
            return handler(task)
        if operation.startswith('elementwise_'):
            return self._elementwise(task, resolve_operation(operation[len('elementwise_'):]))
        if operation.startswith('batch_'):
            return self._batch(task, resolve_operation(operation[len('batch_'):]))
        raise UnsupportedOperationError(f"Unsupported operation: {operation}")

    def _wait(self, future):
        return future.result(timeout=self.task_timeout)

    def _matrix_vector_multiply(self, task):
        return self._wait(self.engine.matrix_vector_multiply(_require(task, 'matrix'), _require(task, 'vector')))

    def _dot_product(self, task):
        return self._wait(self.engine.dot_product(_require(task, 'vector'), _second_operand(task)))

    def _cosine_similarity(self, task):
        return self._wait(self.engine.cosine_similarity(_require(task, 'vector'), _second_operand(task)))

    def _elementwise(self, task, op: Operation):
        other = None if op.is_unary else _second_operand(task)
        return self._wait(self.engine.elementwise_operation(_require(task, 'vector'), other, op))

    def _batch(self, task, op: Operation):
        if not op.is_unary:
            raise UnsupportedOperationError(f"Batch operations must be unary, got {op.name}")

        def kernel(flat, batch_size, vector_size):
            return apply_operation(op, flat)

        return self._wait(self.engine.batch_process(_require(task, 'batch_inputs'), kernel))

    def _ml_inference(self, task):
        return self._wait(self.engine.neural_network_inference(_require(task, 'vector'), task.model_path))

    def _fft(self, task):
        real, imag = fft.forward(_require(task, 'vector').data)
        return {'real': real.tolist(), 'imag': imag.tolist()}

    def _inverse_fft(self, task):
        batch = _require(task, 'batch_inputs')
        if batch.batch_size < 2:
            raise ValueError("inverse_fft requires real and imaginary parts in batch_inputs")
        real, imag = fft.inverse(batch[0].data, batch[1].data)
        return {'real': real.tolist(), 'imag': imag.tolist()}

    def _blocked_matrix_vector_multiply(self, task):
        config = self.engine.config
        return linear_algebra.multiply_matrix_vector(
            _require(task, 'matrix'), _require(task, 'vector'),
            block_size=config.block_size, blocking_threshold=config.blocking_threshold)

    def _solve_linear_system(self, task):
        solution = linear_algebra.solve_linear_system(_require(task, 'matrix'), _require(task, 'vector').data)
        return solution.tolist()

    def _statistics(self, task):
        data = _require(task, 'vector').data
        summary = statistics.summarize(data)
        if task.batch_inputs is not None:
            other = task.batch_inputs[0].data
            summary['covariance'] = statistics.covariance(data, other)
            summary['correlation'] = statistics.pearson_correlation(data, other)
        return summary
