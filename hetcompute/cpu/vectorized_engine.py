"""
SIMD-vectorized CPU engine.

Hot loops run on fixed-width lanes (``hetcompute.simd.lanes``). Large
reductions use fork/join divide-and-conquer: below the split threshold a
range is computed directly, above it the range is halved, the left half is
forked onto the pool and the right half computed inline. A fork that has
not started by join time is cancelled and computed inline instead, so
joins only ever wait on running work and the bounded pool cannot deadlock.
"""

import logging
import operator
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

import numpy as np

from ..config import ComputeConfiguration
from ..core.contracts import ComputeBackend, ComputeKernel, Operation
from ..core.engine import ComputeEngine, apply_kernel, cosine_from_parts, logical_cores, scalar_operation
from ..simd.lanes import lane_dot, lane_elementwise, lane_matvec
from ..simd.simd_core import preferred_lane_width

logger = logging.getLogger(__name__)

T = TypeVar('T')


class VectorizedCpuEngine(ComputeEngine):
    """Lane-parallel CPU backend with fork/join reductions"""

    backend = ComputeBackend.CPU_VECTORIZED

    def __init__(self, config: Optional[ComputeConfiguration] = None):
        self.cores = logical_cores()
        super().__init__(config)
        self.lane_width = preferred_lane_width(self.config.preferred_lane_width)
        self.dot_threshold = self.config.dot_product_split_threshold
        self.row_threshold = self.config.matrix_split_threshold
        logger.info("VectorizedCpuEngine initialized: lane width %d, %d fork/join workers",
                    self.lane_width, self.cores)

    def _create_executor(self) -> Executor:
        return ThreadPoolExecutor(max_workers=self.cores, thread_name_prefix="cpu-simd")

    @property
    def device_info(self) -> str:
        return f"cpu-vectorized({self.lane_width} lanes)"

    def _fork_join(self, left: Callable[[], T], right: Callable[[], T],
                   combine: Callable[[T, T], T]) -> T:
        forked = self._executor.submit(left)
        try:
            right_value = right()
        except BaseException:
            forked.cancel()
            raise
        if forked.cancel():
            left_value = left()
        else:
            left_value = forked.result()
        return combine(left_value, right_value)

    def _dot_range(self, a: np.ndarray, b: np.ndarray, start: int, end: int) -> float:
        if end - start <= self.dot_threshold:
            return lane_dot(a[start:end], b[start:end], self.lane_width)
        mid = (start + end) // 2
        return self._fork_join(lambda: self._dot_range(a, b, start, mid),
                               lambda: self._dot_range(a, b, mid, end),
                               operator.add)

    def _matvec_rows(self, matrix: np.ndarray, vector: np.ndarray, start: int, end: int) -> np.ndarray:
        if end - start <= self.row_threshold:
            return lane_matvec(matrix[start:end], vector, self.lane_width)
        mid = (start + end) // 2
        return self._fork_join(lambda: self._matvec_rows(matrix, vector, start, mid),
                               lambda: self._matvec_rows(matrix, vector, mid, end),
                               lambda top, bottom: np.concatenate((top, bottom)))

    def _matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        return self._matvec_rows(matrix, vector, 0, matrix.shape[0])

    def _dot_product(self, a: np.ndarray, b: np.ndarray) -> float:
        return self._dot_range(a, b, 0, a.shape[0])

    def _elementwise(self, a: np.ndarray, b: Optional[np.ndarray], op: Operation) -> np.ndarray:
        if op.is_transcendental:
            return np.array([scalar_operation(op, x) for x in a.tolist()], dtype=np.float32)
        return lane_elementwise(op, a, b, self.lane_width)

    def _batch_process(self, batch: np.ndarray, kernel: ComputeKernel) -> np.ndarray:
        return np.stack([apply_kernel(kernel, row) for row in batch])

    def _cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        dot = self._dot_range(a, b, 0, a.shape[0])
        norm_a = self._dot_range(a, a, 0, a.shape[0])
        norm_b = self._dot_range(b, b, 0, b.shape[0])
        return cosine_from_parts(dot, norm_a, norm_b)
