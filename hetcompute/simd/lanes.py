"""
Fixed-width lane kernels.

Each kernel strip-mines its input into full lanes of ``width`` elements,
processed as one (lanes, width) block, and finishes the remainder with a
scalar tail loop. Reductions keep one float64 accumulator per lane
(multiply-add into the accumulator) and reduce the lanes horizontally at
the end.
"""

from typing import Optional

import numpy as np

from ..core.contracts import Operation
from ..core.engine import apply_operation, scalar_operation


def _split(length: int, width: int) -> int:
    """Index where the scalar tail starts"""
    return length - (length % width)


def lane_dot(a: np.ndarray, b: np.ndarray, width: int) -> float:
    """Dot product with per-lane accumulators and a scalar tail"""
    n = a.shape[0]
    bound = _split(n, width)

    acc = np.zeros(width, dtype=np.float64)
    if bound:
        lanes_a = a[:bound].reshape(-1, width).astype(np.float64)
        lanes_b = b[:bound].reshape(-1, width).astype(np.float64)
        acc += np.einsum('ij,ij->j', lanes_a, lanes_b)

    total = float(acc.sum())
    for i in range(bound, n):
        total += float(a[i]) * float(b[i])
    return total


def lane_matvec(matrix: np.ndarray, vector: np.ndarray, width: int) -> np.ndarray:
    """Row x vector for every row of ``matrix``"""
    rows, cols = matrix.shape
    bound = _split(cols, width)

    acc = np.zeros((rows, width), dtype=np.float64)
    if bound:
        lanes_m = matrix[:, :bound].reshape(rows, -1, width).astype(np.float64)
        lanes_v = vector[:bound].reshape(-1, width).astype(np.float64)
        acc += np.einsum('rij,ij->rj', lanes_m, lanes_v)

    result = acc.sum(axis=1)
    for j in range(bound, cols):
        result += matrix[:, j].astype(np.float64) * float(vector[j])
    return result.astype(np.float32)


def lane_elementwise(op: Operation, a: np.ndarray, b: Optional[np.ndarray], width: int) -> np.ndarray:
    """Lane-wise arithmetic for the linear operations"""
    n = a.shape[0]
    bound = _split(n, width)
    out = np.empty(n, dtype=np.float32)

    if bound:
        lanes_a = a[:bound].reshape(-1, width)
        lanes_b = b[:bound].reshape(-1, width) if b is not None else None
        out[:bound] = apply_operation(op, lanes_a, lanes_b).reshape(-1)

    for i in range(bound, n):
        y = float(b[i]) if b is not None else 0.0
        out[i] = scalar_operation(op, float(a[i]), y)
    return out
