"""
Multithreaded CPU engine.

Every call partitions its index space into ``2 x logical cores`` contiguous
chunks, runs the chunks through ``invoke_all_cancel_on_failure`` and
reassembles the result by chunk index, so output never depends on thread
scheduling.

The partition substrate is chosen once, at construction, from
``ComputeConfiguration.use_thread_per_task``: a fixed ``ThreadPoolExecutor``
sized to the core count, or a ``ThreadPerTaskExecutor`` that starts one
thread per partition. Calls are coordinated on short-lived threads so that
a coordinator never occupies a pool slot its own partitions need.

The synchronous ``compute_*`` methods are also the CPU fallback path of the
GPU engines.
"""

import concurrent.futures
import logging
import math
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..config import ComputeConfiguration
from ..core.concurrency import ThreadPerTaskExecutor, invoke_all_cancel_on_failure, is_cancelled
from ..core.contracts import ComputeBackend, ComputeKernel, Operation
from ..core.engine import (
    ComputeEngine, apply_kernel, apply_operation, convolve_same, cosine_from_parts,
    logical_cores, partition_ranges, scalar_operation,
)

logger = logging.getLogger(__name__)

_CANCEL_CHECK_INTERVAL = 4096


def _matvec_chunk(matrix: np.ndarray, vector: np.ndarray, start: int, end: int) -> np.ndarray:
    return matrix[start:end].astype(np.float64) @ vector


def _dot_chunk(a: np.ndarray, b: np.ndarray, start: int, end: int) -> float:
    return float(np.dot(a[start:end].astype(np.float64), b[start:end].astype(np.float64)))


def _cosine_chunk(a: np.ndarray, b: np.ndarray, start: int, end: int) -> Tuple[float, float, float]:
    x = a[start:end].astype(np.float64)
    y = b[start:end].astype(np.float64)
    return float(np.dot(x, y)), float(np.dot(x, x)), float(np.dot(y, y))


def _linear_chunk(op: Operation, a: np.ndarray, b: Optional[np.ndarray], start: int, end: int) -> np.ndarray:
    return apply_operation(op, a[start:end], None if b is None else b[start:end])


def _scalar_chunk(op: Operation, a: np.ndarray, start: int, end: int) -> np.ndarray:
    # transcendental functions stay on plain scalar loops
    out = np.empty(end - start, dtype=np.float32)
    values = a[start:end].tolist()
    for i, x in enumerate(values):
        if i % _CANCEL_CHECK_INTERVAL == 0 and is_cancelled():
            raise concurrent.futures.CancelledError()
        out[i] = scalar_operation(op, x)
    return out


def _batch_chunk(batch: np.ndarray, kernel: ComputeKernel, start: int, end: int) -> np.ndarray:
    return np.stack([apply_kernel(kernel, batch[i]) for i in range(start, end)])


def _convolution_chunk(image: np.ndarray, filters: np.ndarray, start: int, end: int) -> np.ndarray:
    return convolve_same(image, filters, rows=(start, end))


class MultiThreadedEngine(ComputeEngine):
    """Partitioned parallel CPU backend"""

    backend = ComputeBackend.CPU_MULTI_THREAD

    def __init__(self, config: Optional[ComputeConfiguration] = None,
                 name: str = "cpu-mt"):
        self._name = name
        self.cores = logical_cores()
        self.partitions = 2 * self.cores
        super().__init__(config)
        self.use_thread_per_task = self.config.use_thread_per_task
        self._coordinator = ThreadPerTaskExecutor(f"{name}-call")
        logger.info("MultiThreadedEngine '%s' initialized: %d cores, %d partitions, substrate=%s",
                    name, self.cores, self.partitions, self.substrate)

    def _create_executor(self) -> Executor:
        if self.config.use_thread_per_task:
            return ThreadPerTaskExecutor(f"{self._name}-part")
        return ThreadPoolExecutor(max_workers=self.cores, thread_name_prefix=f"{self._name}-pool")

    @property
    def substrate(self) -> str:
        return "thread-per-task" if self.use_thread_per_task else "thread-pool"

    @property
    def device_info(self) -> str:
        return f"cpu-multi-thread({self.cores} cores, {self.substrate})"

    def _submit(self, name: str, work: Callable[[], Any]) -> Future:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} has been shut down")
        return self._coordinator.submit(self._timed, name, work)

    def _fan_out(self, name: str, size: int, chunk: Callable[[int, int], Any]) -> List[Any]:
        units = [partial(chunk, start, end) for start, end in partition_ranges(size, self.partitions)]
        return invoke_all_cancel_on_failure(self._executor, units,
                                            timeout=self.config.fan_out_timeout,
                                            thread_name_prefix=f"{self._name}-{name}")

    # Synchronous partitioned kernels

    def compute_matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        vec = vector.astype(np.float64)
        chunks = self._fan_out('matvec', matrix.shape[0], partial(_matvec_chunk, matrix, vec))
        return np.concatenate(chunks).astype(np.float32)

    def compute_dot_product(self, a: np.ndarray, b: np.ndarray) -> float:
        partials = self._fan_out('dot', a.shape[0], partial(_dot_chunk, a, b))
        return math.fsum(partials)

    def compute_elementwise(self, a: np.ndarray, b: Optional[np.ndarray], op: Operation) -> np.ndarray:
        if op.is_transcendental:
            chunks = self._fan_out('scalar', a.shape[0], partial(_scalar_chunk, op, a))
        else:
            chunks = self._fan_out('lanes', a.shape[0], partial(_linear_chunk, op, a, b))
        return np.concatenate(chunks)

    def compute_batch_process(self, batch: np.ndarray, kernel: ComputeKernel) -> np.ndarray:
        chunks = self._fan_out('batch', batch.shape[0], partial(_batch_chunk, batch, kernel))
        return np.concatenate(chunks)

    def compute_convolution2d(self, image: np.ndarray, filters: np.ndarray) -> np.ndarray:
        chunks = self._fan_out('conv', image.shape[0], partial(_convolution_chunk, image, filters))
        return np.concatenate(chunks).reshape(-1)

    def compute_cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        parts: Sequence[Tuple[float, float, float]] = self._fan_out('cosine', a.shape[0],
                                                                      partial(_cosine_chunk, a, b))
        dot = math.fsum(p[0] for p in parts)
        norm_a = math.fsum(p[1] for p in parts)
        norm_b = math.fsum(p[2] for p in parts)
        return cosine_from_parts(dot, norm_a, norm_b)

    # Engine hooks

    def _matrix_vector_multiply(self, matrix, vector):
        return self.compute_matrix_vector_multiply(matrix, vector)

    def _dot_product(self, a, b):
        return self.compute_dot_product(a, b)

    def _elementwise(self, a, b, op):
        return self.compute_elementwise(a, b, op)

    def _batch_process(self, batch, kernel):
        return self.compute_batch_process(batch, kernel)

    def _convolution2d(self, image, filters):
        return self.compute_convolution2d(image, filters)

    def _cosine_similarity(self, a, b):
        return self.compute_cosine_similarity(a, b)

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._coordinator.shutdown(wait=wait)
        super().shutdown(wait=wait)
