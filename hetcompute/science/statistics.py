"""
Numerically stable one-pass statistics.

``mean`` uses Kahan compensated summation and ``variance`` Welford's online
update, so error stays bounded on long inputs. Variances and covariances
are population statistics. Empty inputs yield 0.0.
"""

import math
from typing import Sequence, Union

import numpy as np

from ..errors import DimensionMismatchError

ArrayLike = Union[np.ndarray, Sequence[float]]


def _values(data: ArrayLike):
    if isinstance(data, np.ndarray):
        return data.astype(np.float64).ravel().tolist()
    return [float(x) for x in data]


def mean(data: ArrayLike) -> float:
    values = _values(data)
    if not values:
        return 0.0
    total = 0.0
    compensation = 0.0
    for x in values:
        y = x - compensation
        t = total + y
        compensation = (t - total) - y
        total = t
    return total / len(values)


def variance(data: ArrayLike) -> float:
    values = _values(data)
    count = 0
    running_mean = 0.0
    m2 = 0.0
    for x in values:
        count += 1
        delta = x - running_mean
        running_mean += delta / count
        m2 += delta * (x - running_mean)
    return m2 / count if count else 0.0


def std(data: ArrayLike) -> float:
    return math.sqrt(variance(data))


def covariance(x: ArrayLike, y: ArrayLike) -> float:
    xs = _values(x)
    ys = _values(y)
    if len(xs) != len(ys):
        raise DimensionMismatchError(f"Arrays must have same length: {len(xs)} != {len(ys)}",
                                     expected=len(xs), actual=len(ys))
    count = 0
    mean_x = 0.0
    mean_y = 0.0
    comoment = 0.0
    for a, b in zip(xs, ys):
        count += 1
        dx = a - mean_x
        mean_x += dx / count
        mean_y += (b - mean_y) / count
        comoment += dx * (b - mean_y)
    return comoment / count if count else 0.0


def pearson_correlation(x: ArrayLike, y: ArrayLike) -> float:
    cov = covariance(x, y)
    std_x = std(x)
    std_y = std(y)
    if std_x == 0.0 or std_y == 0.0:
        return 0.0
    return cov / (std_x * std_y)


def summarize(data: ArrayLike) -> dict:
    """Mean, variance and standard deviation of one sample"""
    var = variance(data)
    return {
        'count': len(_values(data)),
        'mean': mean(data),
        'variance': var,
        'std': math.sqrt(var),
    }
