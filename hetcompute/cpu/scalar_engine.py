"""
Single-threaded scalar CPU engine.

Plain Python loops with ``math.fsum`` reductions on one worker thread. It is
the reference every other backend is checked against.
"""

import math
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

import numpy as np

from ..core.contracts import ComputeBackend, ComputeKernel, Operation
from ..core.engine import ComputeEngine, apply_kernel, scalar_operation


class ScalarCpuEngine(ComputeEngine):
    """Reference backend: one thread, one element at a time"""

    backend = ComputeBackend.CPU_SINGLE_THREAD

    def _create_executor(self) -> Executor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="cpu-scalar")

    def _matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        vec = vector.tolist()
        result = [math.fsum(x * y for x, y in zip(row, vec)) for row in matrix.tolist()]
        return np.array(result, dtype=np.float32)

    def _dot_product(self, a: np.ndarray, b: np.ndarray) -> float:
        return math.fsum(x * y for x, y in zip(a.tolist(), b.tolist()))

    def _elementwise(self, a: np.ndarray, b: Optional[np.ndarray], op: Operation) -> np.ndarray:
        if b is None:
            values = [scalar_operation(op, x) for x in a.tolist()]
        else:
            values = [scalar_operation(op, x, y) for x, y in zip(a.tolist(), b.tolist())]
        return np.array(values, dtype=np.float32)

    def _batch_process(self, batch: np.ndarray, kernel: ComputeKernel) -> np.ndarray:
        return np.stack([apply_kernel(kernel, row) for row in batch])
