"""
Device access for the GPU engines.

A DeviceBackend wraps one driver API (PyCUDA or PyOpenCL) behind the handful
of calls the engines need: initialize, allocate, copy in both directions,
zero-fill, launch and free. Kernel launches are integration points: no
kernel bodies ship with the package, so ``launch`` leaves the output buffer
as it was and the engines detect the untouched result.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Sequence, Tuple

import numpy as np

from ..errors import DeviceUnavailableError

logger = logging.getLogger(__name__)

try:
    import pycuda.driver as cuda
    CUDA_AVAILABLE = True
except ImportError:
    cuda = None
    CUDA_AVAILABLE = False

try:
    import pyopencl as cl
    OPENCL_AVAILABLE = True
except ImportError:
    cl = None
    OPENCL_AVAILABLE = False


class DeviceBackend(ABC):
    """Driver-level device operations"""

    platform = "device"

    @abstractmethod
    def initialize(self, device_id: int) -> str:
        """Bring up the device and return its name; raise DeviceUnavailableError on failure"""

    @abstractmethod
    def allocate(self, nbytes: int) -> Any:
        ...

    @abstractmethod
    def free(self, handle: Any) -> None:
        ...

    @abstractmethod
    def copy_to_device(self, handle: Any, host: np.ndarray) -> None:
        ...

    @abstractmethod
    def copy_to_host(self, host: np.ndarray, handle: Any) -> None:
        ...

    @abstractmethod
    def fill_zero(self, handle: Any, nbytes: int) -> None:
        ...

    def launch(self, kernel: str, buffers: Sequence[Any], dims: Tuple[int, ...]) -> None:
        """Run a device kernel. Vendor math libraries or custom kernels plug in here."""
        logger.debug("No native %s kernel for '%s' (dims=%s)", self.platform, kernel, dims)

    @contextmanager
    def activate(self) -> Iterator[None]:
        """Make this device current for the calling thread"""
        yield

    def close(self) -> None:
        pass


class CudaDeviceBackend(DeviceBackend):
    """PyCUDA driver backend"""

    platform = "cuda"

    def __init__(self):
        self._device = None
        self._context = None

    def initialize(self, device_id: int) -> str:
        if not CUDA_AVAILABLE:
            raise DeviceUnavailableError("PyCUDA is not installed")
        try:
            cuda.init()
            self._device = cuda.Device(device_id)
            self._context = self._device.make_context()
            name = self._device.name()
            self._context.pop()
        except Exception as e:
            self._context = None
            raise DeviceUnavailableError(f"CUDA initialization failed: {e}") from e
        return name

    @contextmanager
    def activate(self) -> Iterator[None]:
        self._context.push()
        try:
            yield
        finally:
            cuda.Context.pop()

    def allocate(self, nbytes: int) -> Any:
        return cuda.mem_alloc(nbytes)

    def free(self, handle: Any) -> None:
        handle.free()

    def copy_to_device(self, handle: Any, host: np.ndarray) -> None:
        cuda.memcpy_htod(handle, np.ascontiguousarray(host))

    def copy_to_host(self, host: np.ndarray, handle: Any) -> None:
        cuda.memcpy_dtoh(host, handle)

    def fill_zero(self, handle: Any, nbytes: int) -> None:
        cuda.memset_d32(handle, 0, nbytes // 4)

    def close(self) -> None:
        if self._context is not None:
            self._context.detach()
            self._context = None


class OpenCLDeviceBackend(DeviceBackend):
    """PyOpenCL backend; ``device_id`` indexes devices across all platforms"""

    platform = "opencl"

    def __init__(self):
        self._context = None
        self._queue = None

    def initialize(self, device_id: int) -> str:
        if not OPENCL_AVAILABLE:
            raise DeviceUnavailableError("PyOpenCL is not installed")
        try:
            devices = [d for p in cl.get_platforms() for d in p.get_devices()]
        except Exception as e:
            raise DeviceUnavailableError(f"OpenCL platform query failed: {e}") from e
        if device_id >= len(devices):
            raise DeviceUnavailableError(f"OpenCL device {device_id} not found ({len(devices)} available)")
        device = devices[device_id]
        try:
            self._context = cl.Context([device])
            self._queue = cl.CommandQueue(self._context)
        except Exception as e:
            raise DeviceUnavailableError(f"OpenCL context creation failed: {e}") from e
        return device.name.strip()

    def allocate(self, nbytes: int) -> Any:
        return cl.Buffer(self._context, cl.mem_flags.READ_WRITE, size=nbytes)

    def free(self, handle: Any) -> None:
        handle.release()

    def copy_to_device(self, handle: Any, host: np.ndarray) -> None:
        cl.enqueue_copy(self._queue, handle, np.ascontiguousarray(host)).wait()

    def copy_to_host(self, host: np.ndarray, handle: Any) -> None:
        cl.enqueue_copy(self._queue, host, handle).wait()

    def fill_zero(self, handle: Any, nbytes: int) -> None:
        cl.enqueue_fill_buffer(self._queue, handle, np.float32(0), 0, nbytes).wait()

    def close(self) -> None:
        if self._queue is not None:
            self._queue.finish()
        self._queue = None
        self._context = None
