"""
Tracked allocation of host staging buffers and device buffers.

Every allocation owns exactly one release action. The manager maps every
reference a caller may hold (the owning buffer and any zero-copy view of
it) to that allocation, so freeing through any alias releases the memory
once and forgets all of its aliases. ``shutdown`` sweeps whatever is still
outstanding, once per allocation.

The registry is a plain dict keyed by ``id()`` (numpy arrays are not
hashable); entries keep their buffers alive so ids cannot be reused while
tracked. Each allocation carries its own lock, there is no manager-wide one.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

FLOAT_BYTES = np.dtype(np.float32).itemsize


class TrackedAllocation:
    """One releasable unit of memory and all references to it"""

    __slots__ = ('size_bytes', 'refs', 'label', '_release', '_released', '_lock')

    def __init__(self, refs: Tuple[Any, ...], release: Optional[Callable[[], None]],
                 size_bytes: int, label: str):
        self.refs = refs
        self.size_bytes = size_bytes
        self.label = label
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Run the release action; True only for the call that actually ran it"""
        with self._lock:
            if self._released:
                return False
            self._released = True
        try:
            if self._release is not None:
                self._release()
            logger.debug("Released %s allocation of %d bytes", self.label, self.size_bytes)
        finally:
            self.refs = ()
        return True


class GpuMemoryManager:
    """Registry of outstanding buffer allocations"""

    def __init__(self):
        self._allocations: Dict[int, TrackedAllocation] = {}

    def allocate_byte_buffer(self, size_bytes: int) -> np.ndarray:
        """Zeroed, 64-byte aligned host buffer of ``size_bytes``"""
        if size_bytes <= 0:
            raise ValueError("size_bytes must be > 0")
        parent = self._aligned_bytes(size_bytes)
        self._register((parent,), None, size_bytes, "byte buffer")
        logger.info("Allocated byte buffer: %d bytes", size_bytes)
        return parent

    def allocate_float_buffer(self, length: int) -> np.ndarray:
        """float32 view over a tracked byte buffer; both references free the same memory"""
        if length <= 0:
            raise ValueError("length must be > 0")
        size_bytes = length * FLOAT_BYTES
        parent = self._aligned_bytes(size_bytes)
        view = parent.view(np.float32)
        self._register((parent, view), None, size_bytes, "float buffer")
        logger.info("Allocated float buffer: %d floats (%d bytes)", length, size_bytes)
        return view

    def track(self, buffer: Any, release: Callable[[], None], *aliases: Any,
              size_bytes: int = 0, label: str = "device buffer") -> Any:
        """Register externally allocated memory (e.g. a device pointer)"""
        if buffer is None:
            raise ValueError("buffer must not be None")
        if not callable(release):
            raise TypeError("release must be callable")
        self._register((buffer,) + aliases, release, size_bytes, label)
        return buffer

    def free(self, ref: Any) -> bool:
        """Release the allocation ``ref`` belongs to; unknown refs only warn"""
        if ref is None:
            return False
        allocation = self._allocations.pop(id(ref), None)
        if allocation is None:
            logger.warning("Attempted to free unknown buffer %s", _describe(ref))
            return False

        for alias in allocation.refs:
            key = id(alias)
            if self._allocations.get(key) is allocation:
                self._allocations.pop(key, None)

        try:
            released = allocation.release()
        except Exception as e:
            logger.warning("Failed to release %s: %s", allocation.label, e)
            return False
        if released:
            logger.info("Freed %s (%d bytes)", allocation.label, allocation.size_bytes)
        return released

    def is_tracked(self, ref: Any) -> bool:
        return id(ref) in self._allocations

    def outstanding(self) -> int:
        """Number of distinct live allocations"""
        return len({id(a) for a in list(self._allocations.values())})

    def get_stats(self) -> Dict[str, int]:
        unique = {id(a): a for a in list(self._allocations.values())}
        return {
            'allocations': len(unique),
            'references': len(self._allocations),
            'bytes': sum(a.size_bytes for a in unique.values()),
        }

    def shutdown(self) -> None:
        """Release every outstanding allocation exactly once and clear the registry"""
        unique = {id(a): a for a in list(self._allocations.values())}
        logger.info("GpuMemoryManager shutting down, cleaning %d allocations", len(unique))
        for allocation in unique.values():
            try:
                allocation.release()
            except Exception as e:
                logger.warning("Failed to release %s during shutdown: %s", allocation.label, e)
        self._allocations.clear()

    def _register(self, refs: Tuple[Any, ...], release: Optional[Callable[[], None]],
                  size_bytes: int, label: str) -> TrackedAllocation:
        allocation = TrackedAllocation(refs, release, size_bytes, label)
        registered = []
        for ref in refs:
            existing = self._allocations.setdefault(id(ref), allocation)
            if existing is not allocation:
                for key in registered:
                    self._allocations.pop(key, None)
                raise ValueError(f"Buffer {_describe(ref)} is already tracked")
            registered.append(id(ref))
        return allocation

    @staticmethod
    def _aligned_bytes(size_bytes: int, alignment: int = 64) -> np.ndarray:
        raw = np.zeros(size_bytes + alignment, dtype=np.uint8)
        offset = (-raw.ctypes.data) % alignment
        return raw[offset:offset + size_bytes]


def _describe(ref: Any) -> str:
    if isinstance(ref, np.ndarray):
        return f"ndarray(dtype={ref.dtype}, size={ref.size})"
    return type(ref).__name__
