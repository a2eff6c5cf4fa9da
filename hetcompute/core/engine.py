"""
ComputeEngine contract shared by every backend.

Public methods validate their operands synchronously (a dimension mismatch
is raised before any work is scheduled) and return a
``concurrent.futures.Future``; the numeric work runs on the engine's
executor. Backends implement the synchronous ``_``-prefixed hooks.

Numeric policy: reductions accumulate in float64 and results are stored as
float32, so engines agree to within float32 rounding.
"""

import logging
import math
import os
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import psutil

from ..config import ComputeConfiguration
from ..errors import DimensionMismatchError, UnsupportedOperationError
from .contracts import ComputeBackend, ComputeKernel, ComputeTask, Operation
from .vectors import BatchVector, DenseVector, as_matrix

logger = logging.getLogger(__name__)

Range = Tuple[int, int]


def logical_cores() -> int:
    """Number of logical CPUs, at least 1"""
    return psutil.cpu_count(logical=True) or os.cpu_count() or 1


def partition_ranges(size: int, partitions: Optional[int] = None) -> List[Range]:
    """Split ``[0, size)`` into contiguous chunks.

    The default partition count is ``2 x logical cores``, clamped to ``size``.
    """
    if size <= 0:
        return []
    if partitions is None:
        partitions = 2 * logical_cores()
    partitions = max(1, min(partitions, size))
    chunk = (size + partitions - 1) // partitions
    return [(start, min(size, start + chunk)) for start in range(0, size, chunk)]


def select_backend(task: Optional[ComputeTask], gpu_available: bool,
                   large_task_threshold: int = 10000,
                   cores: Optional[int] = None) -> ComputeBackend:
    """Advisory routing heuristic for a task"""
    if task is not None and task.vector_size > large_task_threshold and gpu_available:
        return ComputeBackend.GPU_CUDA
    cores = logical_cores() if cores is None else cores
    if task is not None and task.cpu_intensive and cores > 4:
        return ComputeBackend.CPU_MULTI_THREAD
    return ComputeBackend.CPU_SINGLE_THREAD


def resolve_operation(op: Union[Operation, str]) -> Operation:
    if isinstance(op, Operation):
        return op
    try:
        return Operation[str(op).upper()]
    except KeyError:
        raise UnsupportedOperationError(f"Unknown elementwise operation: {op!r}") from None


# Elementwise semantics

def _sigmoid64(x: np.ndarray) -> np.ndarray:
    out = np.empty_like(x)
    positive = x >= 0
    out[positive] = 1.0 / (1.0 + np.exp(-x[positive]))
    exp_x = np.exp(x[~positive])
    out[~positive] = exp_x / (1.0 + exp_x)
    return out


def apply_operation(op: Operation, a: np.ndarray, b: Optional[np.ndarray] = None) -> np.ndarray:
    """Vectorized elementwise transform, float64 internally, float32 out"""
    x = np.asarray(a, dtype=np.float64)
    if op is Operation.RELU:
        out = np.maximum(x, 0.0)
    elif op is Operation.SIGMOID:
        out = _sigmoid64(x)
    elif op is Operation.TANH:
        out = np.tanh(x)
    else:
        y = np.asarray(b, dtype=np.float64)
        if op is Operation.ADD:
            out = x + y
        elif op is Operation.SUBTRACT:
            out = x - y
        elif op is Operation.MULTIPLY:
            out = x * y
        elif op is Operation.DIVIDE:
            with np.errstate(divide='ignore', invalid='ignore'):
                out = x / y
            out[y == 0.0] = np.nan
        else:
            raise UnsupportedOperationError(f"Unsupported operation: {op}")
    return out.astype(np.float32)


def scalar_operation(op: Operation, x: float, y: float = 0.0) -> float:
    """Single-element form of ``apply_operation``"""
    if op is Operation.ADD:
        return x + y
    if op is Operation.SUBTRACT:
        return x - y
    if op is Operation.MULTIPLY:
        return x * y
    if op is Operation.DIVIDE:
        return math.nan if y == 0.0 else x / y
    if op is Operation.RELU:
        return max(0.0, x)
    if op is Operation.SIGMOID:
        if x >= 0:
            return 1.0 / (1.0 + math.exp(-x))
        z = math.exp(x)
        return z / (1.0 + z)
    if op is Operation.TANH:
        return math.tanh(x)
    raise UnsupportedOperationError(f"Unsupported operation: {op}")


def apply_kernel(kernel: ComputeKernel, row: np.ndarray) -> np.ndarray:
    """Run a per-vector kernel and check it preserved the length"""
    output = np.asarray(kernel(row.copy(), 1, row.shape[0]), dtype=np.float32)
    if output.shape != row.shape:
        raise DimensionMismatchError(
            f"Kernel returned {output.size} values for a vector of {row.shape[0]}",
            expected=row.shape[0], actual=output.size)
    return output


def convolve_same(image: np.ndarray, filters: np.ndarray,
                  rows: Optional[Range] = None) -> np.ndarray:
    """Zero-padded per-channel cross-correlation summed over channels.

    ``image`` is (H, W, C), ``filters`` is (C, Kh, Kw); returns the requested
    output rows as a (rows, W) float32 array.
    """
    height, width, _ = image.shape
    _, kh, kw = filters.shape
    start, end = rows if rows is not None else (0, height)
    ph, pw = kh // 2, kw // 2
    padded = np.pad(image.astype(np.float64), ((ph, kh - 1 - ph), (pw, kw - 1 - pw), (0, 0)))
    weights = filters.astype(np.float64)

    out = np.zeros((end - start, width), dtype=np.float64)
    for dy in range(kh):
        for dx in range(kw):
            window = padded[start + dy:end + dy, dx:dx + width, :]
            out += window @ weights[:, dy, dx]
    return out.astype(np.float32)


def cosine_from_parts(dot: float, norm_a_sq: float, norm_b_sq: float) -> float:
    if norm_a_sq <= 0.0 or norm_b_sq <= 0.0:
        return 0.0
    return float(np.float32(dot / (math.sqrt(norm_a_sq) * math.sqrt(norm_b_sq))))


@dataclass(frozen=True)
class ComputeStats:
    gpu_available: bool
    active_devices: int


def _as_vector(value, name: str) -> DenseVector:
    if isinstance(value, DenseVector):
        return value
    if value is None:
        raise ValueError(f"{name} must not be None")
    return DenseVector(value)


def _require_same_dimensions(v1: DenseVector, v2: DenseVector) -> None:
    if v1.dimensions != v2.dimensions:
        raise DimensionMismatchError(
            f"Vector dimensions must match: {v1.dimensions} != {v2.dimensions}",
            expected=v1.dimensions, actual=v2.dimensions)


class ComputeEngine(ABC):
    """
    Asynchronous compute contract implemented by every backend.

    Each engine is bound to one physical backend and owns its executor for
    its whole lifetime; call ``shutdown()`` (or use it as a context manager)
    to release it.
    """

    backend: ComputeBackend = ComputeBackend.CPU_SINGLE_THREAD

    def __init__(self, config: Optional[ComputeConfiguration] = None):
        self.config = config or ComputeConfiguration()
        self.preferred_backend = self.backend
        self.device_id = self.config.device_id
        self.enable_profiling = self.config.enable_profiling

        self._executor = self._create_executor()
        self._closed = False

        # Profiling
        self._operation_count = 0
        self._operation_times: Dict[str, float] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _create_executor(self) -> Executor:
        """Executor owned by this engine for its lifetime"""

    # Synchronous hooks

    @abstractmethod
    def _matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def _dot_product(self, a: np.ndarray, b: np.ndarray) -> float:
        ...

    @abstractmethod
    def _elementwise(self, a: np.ndarray, b: Optional[np.ndarray], op: Operation) -> np.ndarray:
        ...

    @abstractmethod
    def _batch_process(self, batch: np.ndarray, kernel: ComputeKernel) -> np.ndarray:
        ...

    def _neural_network_inference(self, data: np.ndarray, model_path: Optional[str]) -> np.ndarray:
        logger.debug("%s has no inference runtime, passing input through", type(self).__name__)
        return data.copy()

    def _convolution2d(self, image: np.ndarray, filters: np.ndarray) -> np.ndarray:
        return convolve_same(image, filters).reshape(-1)

    def _cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_from_parts(self._dot_product(a, b), self._dot_product(a, a), self._dot_product(b, b))

    # Public asynchronous API

    def matrix_vector_multiply(self, matrix, vector) -> 'Future[DenseVector]':
        """Multiply a row-major matrix by a vector; result length = rows"""
        m = as_matrix(matrix)
        v = _as_vector(vector, 'vector')
        if m.shape[1] != v.dimensions:
            raise DimensionMismatchError(
                f"Matrix has {m.shape[1]} columns but vector has {v.dimensions} dimensions",
                expected=m.shape[1], actual=v.dimensions)
        return self._submit('matrix_vector_multiply',
                            lambda: DenseVector(self._matrix_vector_multiply(m, v.data)))

    def dot_product(self, v1, v2) -> 'Future[float]':
        a = _as_vector(v1, 'v1')
        b = _as_vector(v2, 'v2')
        _require_same_dimensions(a, b)
        return self._submit('dot_product', lambda: float(np.float32(self._dot_product(a.data, b.data))))

    def elementwise_operation(self, v1, v2, op: Union[Operation, str]) -> 'Future[DenseVector]':
        operation = resolve_operation(op)
        a = _as_vector(v1, 'v1')
        if operation.is_unary:
            b_data = None
        else:
            b = _as_vector(v2, 'v2')
            _require_same_dimensions(a, b)
            b_data = b.data
        return self._submit(f'elementwise_{operation.name.lower()}',
                            lambda: DenseVector(self._elementwise(a.data, b_data, operation)))

    def batch_process(self, batch, kernel: ComputeKernel) -> 'Future[BatchVector]':
        """Apply ``kernel`` to every vector of ``batch`` independently"""
        if not callable(kernel):
            raise TypeError("kernel must be callable")
        vectors = batch if isinstance(batch, BatchVector) else BatchVector(batch)
        matrix = vectors.to_matrix()
        return self._submit('batch_process',
                            lambda: BatchVector.from_arrays(self._batch_process(matrix, kernel)))

    def neural_network_inference(self, data, model_path: Optional[str] = None) -> 'Future[DenseVector]':
        vector = _as_vector(data, 'input')
        return self._submit('neural_network_inference',
                            lambda: DenseVector(self._neural_network_inference(vector.data, model_path)))

    def convolution2d(self, image, filters) -> 'Future[DenseVector]':
        """Same-size 2-D convolution of an (H, W, C) image with (C, Kh, Kw) filters"""
        img = np.array(image, dtype=np.float32, copy=True)
        flt = np.array(filters, dtype=np.float32, copy=True)
        if img.ndim != 3 or flt.ndim != 3:
            raise DimensionMismatchError(
                f"convolution2d expects 3-D image and filters, got {img.ndim}-D and {flt.ndim}-D")
        if img.shape[2] != flt.shape[0]:
            raise DimensionMismatchError(
                f"Image has {img.shape[2]} channels but filters have {flt.shape[0]}",
                expected=img.shape[2], actual=flt.shape[0])
        if 0 in img.shape or 0 in flt.shape:
            raise DimensionMismatchError("convolution2d operands must be non-empty")
        return self._submit('convolution2d', lambda: DenseVector(self._convolution2d(img, flt)))

    def cosine_similarity(self, v1, v2) -> 'Future[float]':
        a = _as_vector(v1, 'v1')
        b = _as_vector(v2, 'v2')
        _require_same_dimensions(a, b)
        return self._submit('cosine_similarity', lambda: self._cosine_similarity(a.data, b.data))

    # Capabilities

    def is_gpu_available(self) -> bool:
        return False

    def get_performance_stats(self) -> ComputeStats:
        gpu = self.is_gpu_available()
        return ComputeStats(gpu_available=gpu, active_devices=1 if gpu else 0)

    def get_optimal_backend(self, task: Optional[ComputeTask]) -> ComputeBackend:
        """Advisory: engines stay bound to their own backend regardless"""
        return select_backend(task, self.is_gpu_available(), self.config.large_task_threshold)

    @property
    def device_info(self) -> str:
        return self.backend.name.lower().replace('_', '-')

    def get_profile(self) -> Dict[str, Any]:
        """Operation count and cumulative seconds per operation (profiling only)"""
        with self._lock:
            return {
                'operation_count': self._operation_count,
                'operation_times': dict(self._operation_times),
            }

    # Execution

    def _submit(self, name: str, work: Callable[[], Any]) -> Future:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} has been shut down")
        return self._executor.submit(self._timed, name, work)

    def _timed(self, name: str, work: Callable[[], Any]) -> Any:
        if not self.enable_profiling:
            return work()
        start = time.perf_counter()
        try:
            return work()
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self._operation_count += 1
                self._operation_times[name] = self._operation_times.get(name, 0.0) + elapsed

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("%s shut down", type(self).__name__)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(backend={self.preferred_backend.name}, device={self.device_info})"
