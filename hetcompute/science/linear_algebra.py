"""
Dense linear algebra kernels: cache-blocked matrix-vector multiply and
Gauss-Jordan elimination with partial pivoting.
"""

import math
from typing import Optional

import numpy as np

from ..core.vectors import DenseVector, as_matrix
from ..errors import DimensionMismatchError, SingularMatrixError
from ..simd.simd_core import detect_capabilities

SINGULAR_EPSILON = 1e-12
DEFAULT_BLOCKING_THRESHOLD = 4096


def optimal_block_size(l1_bytes: Optional[int] = None) -> int:
    """Largest power-of-two block whose two float64 tiles fit in L1"""
    if l1_bytes is None:
        l1_bytes = detect_capabilities().cache_sizes.get('L1', 32 * 1024)
    side = int(math.sqrt(max(l1_bytes, 64) / 8))
    return max(8, 1 << (side.bit_length() - 1))


def multiply_matrix_vector(matrix, vector, block_size: Optional[int] = None,
                           blocking_threshold: int = DEFAULT_BLOCKING_THRESHOLD) -> DenseVector:
    """
    Matrix x vector with optional cache blocking.

    Blocking over (row, column) tiles applies once ``rows * cols`` exceeds
    ``blocking_threshold``; smaller inputs use a plain row loop.
    """
    m = as_matrix(matrix)
    vec = vector.data if isinstance(vector, DenseVector) else np.asarray(vector, dtype=np.float32)
    rows, cols = m.shape
    if vec.ndim != 1 or cols != vec.shape[0]:
        raise DimensionMismatchError(
            f"Matrix columns ({cols}) must match vector dimensions ({vec.shape[-1]})",
            expected=cols, actual=vec.shape[-1])

    v64 = vec.astype(np.float64)
    out = np.zeros(rows, dtype=np.float64)

    if rows * cols > blocking_threshold:
        block = block_size or optimal_block_size()
        for i in range(0, rows, block):
            i_end = min(rows, i + block)
            for k in range(0, cols, block):
                k_end = min(cols, k + block)
                out[i:i_end] += m[i:i_end, k:k_end].astype(np.float64) @ v64[k:k_end]
    else:
        for i in range(rows):
            out[i] = m[i].astype(np.float64) @ v64

    return DenseVector(out.astype(np.float32))


def solve_linear_system(a, b) -> np.ndarray:
    """
    Solve ``A x = b`` by Gauss-Jordan elimination with partial pivoting.

    Raises:
        DimensionMismatchError: A is not square or b does not match
        SingularMatrixError: a pivot magnitude fell below 1e-12
    """
    a_matrix = np.array(a, dtype=np.float64)
    b_vector = np.array(b, dtype=np.float64).reshape(-1)
    if a_matrix.size == 0 and b_vector.size == 0:
        return np.zeros(0, dtype=np.float64)
    if a_matrix.ndim != 2 or a_matrix.shape[0] != a_matrix.shape[1]:
        raise DimensionMismatchError(f"Matrix A must be square, got shape {a_matrix.shape}")
    n = a_matrix.shape[0]
    if b_vector.shape[0] != n:
        raise DimensionMismatchError(f"Right-hand side has {b_vector.shape[0]} entries, expected {n}",
                                     expected=n, actual=b_vector.shape[0])

    augmented = np.hstack((a_matrix, b_vector.reshape(n, 1)))

    for p in range(n):
        # Partial pivot
        pivot_row = p + int(np.argmax(np.abs(augmented[p:, p])))
        if pivot_row != p:
            augmented[[p, pivot_row]] = augmented[[pivot_row, p]]
        pivot = augmented[p, p]
        if abs(pivot) < SINGULAR_EPSILON:
            raise SingularMatrixError("Matrix is singular or nearly singular", column=p)

        augmented[p, p:] /= pivot

        factors = augmented[:, p].copy()
        factors[p] = 0.0
        nonzero = factors != 0.0
        if nonzero.any():
            augmented[nonzero, p:] -= np.outer(factors[nonzero], augmented[p, p:])

    return augmented[:, n].copy()
