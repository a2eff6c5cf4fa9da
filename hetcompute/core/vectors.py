"""
Dense and batched float vectors.

Both containers are immutable: the backing numpy arrays are copied on
construction and marked read-only, so a vector can be shared freely between
concurrent engine calls.
"""

from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import DimensionMismatchError

ArrayLike = Union[np.ndarray, Sequence[float]]


class DenseVector:
    """Fixed-length float32 vector"""

    __slots__ = ('_data',)

    def __init__(self, data: ArrayLike):
        array = np.array(data, dtype=np.float32, copy=True)
        if array.ndim != 1:
            raise DimensionMismatchError(f"DenseVector requires 1-D data, got {array.ndim}-D")
        if array.size == 0:
            raise ValueError("DenseVector requires at least one element")
        array.setflags(write=False)
        self._data = array

    @classmethod
    def zeros(cls, dimensions: int) -> 'DenseVector':
        return cls(np.zeros(dimensions, dtype=np.float32))

    @classmethod
    def ones(cls, dimensions: int) -> 'DenseVector':
        return cls(np.ones(dimensions, dtype=np.float32))

    @classmethod
    def random(cls, dimensions: int, seed: Optional[int] = None) -> 'DenseVector':
        rng = np.random.default_rng(seed)
        return cls(rng.standard_normal(dimensions).astype(np.float32))

    @property
    def dimensions(self) -> int:
        return int(self._data.shape[0])

    @property
    def data(self) -> np.ndarray:
        """Read-only float32 view of the elements"""
        return self._data

    def norm(self) -> float:
        return float(np.sqrt(np.dot(self._data.astype(np.float64), self._data.astype(np.float64))))

    def to_list(self) -> List[float]:
        return self._data.tolist()

    def __len__(self) -> int:
        return self.dimensions

    def __iter__(self) -> Iterator[float]:
        return iter(self._data.tolist())

    def __getitem__(self, index):
        return self._data[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, DenseVector):
            return NotImplemented
        return np.array_equal(self._data, other._data, equal_nan=True)

    def __hash__(self) -> int:
        return hash(self._data.tobytes())

    def __repr__(self) -> str:
        preview = ', '.join(f"{x:.4g}" for x in self._data[:4])
        suffix = ', ...' if self.dimensions > 4 else ''
        return f"DenseVector(dim={self.dimensions}, [{preview}{suffix}])"


class BatchVector:
    """Ordered batch of DenseVectors sharing one dimension"""

    __slots__ = ('_vectors',)

    def __init__(self, vectors: Iterable[Union[DenseVector, ArrayLike]]):
        items = tuple(v if isinstance(v, DenseVector) else DenseVector(v) for v in vectors)
        if not items:
            raise ValueError("BatchVector requires at least one vector")
        dims = items[0].dimensions
        for index, vector in enumerate(items):
            if vector.dimensions != dims:
                raise DimensionMismatchError(
                    f"Batch vector {index} has dimension {vector.dimensions}, expected {dims}",
                    expected=dims, actual=vector.dimensions)
        self._vectors = items

    @classmethod
    def from_arrays(cls, arrays: Iterable[ArrayLike]) -> 'BatchVector':
        return cls(DenseVector(a) for a in arrays)

    @property
    def batch_size(self) -> int:
        return len(self._vectors)

    @property
    def dimensions(self) -> int:
        return self._vectors[0].dimensions

    @property
    def vectors(self) -> Tuple[DenseVector, ...]:
        return self._vectors

    def to_matrix(self) -> np.ndarray:
        """Stack into a (batch_size, dimensions) float32 array"""
        return np.stack([v.data for v in self._vectors])

    def to_list(self) -> List[List[float]]:
        return [v.to_list() for v in self._vectors]

    def __len__(self) -> int:
        return self.batch_size

    def __iter__(self) -> Iterator[DenseVector]:
        return iter(self._vectors)

    def __getitem__(self, index: int) -> DenseVector:
        return self._vectors[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, BatchVector):
            return NotImplemented
        return self._vectors == other._vectors

    def __hash__(self) -> int:
        return hash(self._vectors)

    def __repr__(self) -> str:
        return f"BatchVector(batch_size={self.batch_size}, dim={self.dimensions})"


def as_matrix(matrix) -> np.ndarray:
    """Read-only float32 copy of a row-major 2-D array; ragged input is rejected"""
    if isinstance(matrix, np.ndarray):
        array = np.array(matrix, dtype=np.float32, copy=True)
    else:
        rows = list(matrix)
        if not rows:
            raise DimensionMismatchError("Matrix must have at least one row")
        if np.ndim(rows[0]) != 1:
            raise DimensionMismatchError(f"Matrix rows must be 1-D, got {np.ndim(rows[0])}-D")
        width = len(rows[0])
        for index, row in enumerate(rows):
            if np.ndim(row) != 1 or len(row) != width:
                raise DimensionMismatchError(
                    f"Ragged matrix: row {index} has shape {np.shape(row)}, expected {width} columns",
                    expected=width, actual=np.size(row))
        array = np.array(rows, dtype=np.float32)

    if array.ndim != 2:
        raise DimensionMismatchError(f"Matrix must be 2-D, got {array.ndim}-D")
    if array.shape[0] == 0 or array.shape[1] == 0:
        raise DimensionMismatchError(f"Matrix must be non-empty, got shape {array.shape}")
    array.setflags(write=False)
    return array
