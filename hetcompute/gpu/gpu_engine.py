"""
GPU compute engines with a CPU fallback chain.

Device initialization happens once, at construction. Failure is never
fatal: the engine downgrades ``preferred_backend`` to CPU_MULTI_THREAD and
serves every call from its multithreaded CPU fallback.

When the device is up, matrix-vector multiply allocates device buffers,
copies the operands in, launches the kernel and copies the result back;
buffers are released in ``finally`` through the GpuMemoryManager. A device
exception, or an output that is exactly zero everywhere, re-runs the call on
the CPU fallback. The all-zero check also fires for legitimately zero
results; that recomputation is accepted.

Operations without device kernels (dot product, elementwise, batch, cosine
similarity) always run on the CPU fallback path.
"""

import logging
import threading
from abc import abstractmethod
from concurrent.futures import Executor, ThreadPoolExecutor
from functools import partial
from typing import Any, List, Optional

import numpy as np

from ..config import ComputeConfiguration
from ..core.contracts import ComputeBackend, ComputeKernel, Operation
from ..core.engine import ComputeEngine, logical_cores
from ..cpu.multithreaded_engine import MultiThreadedEngine
from ..errors import DeviceUnavailableError
from .device import CudaDeviceBackend, DeviceBackend, OpenCLDeviceBackend
from .memory_manager import GpuMemoryManager
from .tensorrt import TensorRTInference

logger = logging.getLogger(__name__)


class GpuComputeEngine(ComputeEngine):
    """Device-backed engine; subclasses choose the driver"""

    backend = ComputeBackend.GPU_CUDA

    def __init__(self, config: Optional[ComputeConfiguration] = None,
                 device: Optional[DeviceBackend] = None,
                 memory_manager: Optional[GpuMemoryManager] = None):
        self.cores = logical_cores()
        super().__init__(config)
        self.device = device if device is not None else self._default_device()
        self.memory = memory_manager if memory_manager is not None else GpuMemoryManager()
        self._owns_memory = memory_manager is None
        self._fallback = MultiThreadedEngine(self.config, name=f"{self.device.platform}-fallback")

        self.initialized = False
        self.device_name = "unknown"
        self._initialize_device()

    @abstractmethod
    def _default_device(self) -> DeviceBackend:
        """Driver backend used when none is injected"""

    def _create_executor(self) -> Executor:
        # device transfers dominate, half the cores is enough
        return ThreadPoolExecutor(max_workers=max(1, self.cores // 2),
                                  thread_name_prefix=f"{self.backend.name.lower()}-exec")

    def _initialize_device(self) -> None:
        try:
            self.device_name = self.device.initialize(self.device_id)
            self.preferred_backend = self.backend
            self.initialized = True
            logger.info("%s initialized: device_id=%d, device_name=%s",
                        self.device.platform, self.device_id, self.device_name)
        except Exception as e:
            logger.warning("Failed to initialize %s engine, falling back to CPU. Reason: %s",
                           self.device.platform, e)
            self.preferred_backend = ComputeBackend.CPU_MULTI_THREAD
            self.initialized = False

    def is_gpu_available(self) -> bool:
        return self.initialized

    @property
    def device_info(self) -> str:
        if self.initialized:
            return f"{self.device.platform}:{self.device_id}:{self.device_name}"
        return f"{self.device.platform}-fallback({self._fallback.device_info})"

    @property
    def fallback(self) -> MultiThreadedEngine:
        return self._fallback

    # Device path

    def _device_alloc(self, nbytes: int, owned: List[Any]) -> Any:
        handle = self.device.allocate(nbytes)
        self.memory.track(handle, partial(self.device.free, handle),
                          size_bytes=nbytes, label=f"{self.device.platform} buffer")
        owned.append(handle)
        return handle

    def _device_matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        rows, cols = matrix.shape
        flat = np.ascontiguousarray(matrix, dtype=np.float32).reshape(-1)
        vec = np.ascontiguousarray(vector, dtype=np.float32)
        result = np.zeros(rows, dtype=np.float32)
        owned: List[Any] = []

        with self.device.activate():
            try:
                d_matrix = self._device_alloc(flat.nbytes, owned)
                d_vector = self._device_alloc(vec.nbytes, owned)
                d_result = self._device_alloc(result.nbytes, owned)

                self.device.copy_to_device(d_matrix, flat)
                self.device.copy_to_device(d_vector, vec)
                self.device.fill_zero(d_result, result.nbytes)

                self.device.launch('matrix_vector_multiply', (d_matrix, d_vector, d_result), (rows, cols))

                self.device.copy_to_host(result, d_result)
            finally:
                for handle in owned:
                    self.memory.free(handle)
        return result

    # Engine hooks

    def _matrix_vector_multiply(self, matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        if not self.initialized:
            return self._fallback.compute_matrix_vector_multiply(matrix, vector)

        try:
            result = self._device_matrix_vector_multiply(matrix, vector)
        except Exception as e:
            logger.error("%s matrix_vector_multiply failed, falling back to CPU: %s",
                         self.device.platform, e, exc_info=True)
            return self._fallback.compute_matrix_vector_multiply(matrix, vector)

        if not np.any(result):
            logger.warning("GPU kernel produced all-zero result; falling back to CPU implementation")
            return self._fallback.compute_matrix_vector_multiply(matrix, vector)
        return result

    def _dot_product(self, a: np.ndarray, b: np.ndarray) -> float:
        return self._fallback.compute_dot_product(a, b)

    def _elementwise(self, a: np.ndarray, b: Optional[np.ndarray], op: Operation) -> np.ndarray:
        return self._fallback.compute_elementwise(a, b, op)

    def _batch_process(self, batch: np.ndarray, kernel: ComputeKernel) -> np.ndarray:
        return self._fallback.compute_batch_process(batch, kernel)

    def _cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return self._fallback.compute_cosine_similarity(a, b)

    def _convolution2d(self, image: np.ndarray, filters: np.ndarray) -> np.ndarray:
        if not self.initialized:
            return self._fallback.compute_convolution2d(image, filters)
        logger.warning("%s convolution2d kernel not available; returning zeros", self.device.platform)
        return np.zeros(image.shape[0] * image.shape[1], dtype=np.float32)

    def _native_inference(self, data: np.ndarray, model_path: Optional[str]) -> np.ndarray:
        raise DeviceUnavailableError(f"No native inference runtime for {self.device.platform}")

    def _neural_network_inference(self, data: np.ndarray, model_path: Optional[str]) -> np.ndarray:
        if self.initialized and model_path:
            try:
                return self._native_inference(data, model_path)
            except Exception as e:
                logger.warning("Native inference failed for '%s', passing input through: %s", model_path, e)
        else:
            logger.warning("GPU inference unavailable (initialized=%s, model=%s), passing input through",
                           self.initialized, model_path)
        return data.copy()

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        super().shutdown(wait=wait)
        self._fallback.shutdown(wait=wait)
        if self._owns_memory:
            self.memory.shutdown()
        if self.initialized:
            try:
                self.device.close()
            except Exception as e:
                logger.warning("Error closing %s device: %s", self.device.platform, e)


class CudaComputeEngine(GpuComputeEngine):
    """CUDA engine (PyCUDA driver) with TensorRT inference"""

    backend = ComputeBackend.GPU_CUDA

    def __init__(self, config: Optional[ComputeConfiguration] = None,
                 device: Optional[DeviceBackend] = None,
                 memory_manager: Optional[GpuMemoryManager] = None):
        self._inference_engines = {}
        self._inference_lock = threading.Lock()
        super().__init__(config, device, memory_manager)

    def _default_device(self) -> DeviceBackend:
        return CudaDeviceBackend()

    def _native_inference(self, data: np.ndarray, model_path: Optional[str]) -> np.ndarray:
        with self._inference_lock:
            engine = self._inference_engines.get(model_path)
            if engine is None:
                engine = TensorRTInference(model_path, self.device_id)
                self._inference_engines[model_path] = engine
        return engine.execute(data)

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        with self._inference_lock:
            for engine in self._inference_engines.values():
                engine.close()
            self._inference_engines.clear()
        super().shutdown(wait=wait)


class OpenCLComputeEngine(GpuComputeEngine):
    """OpenCL engine (PyOpenCL driver)"""

    backend = ComputeBackend.GPU_OPENCL

    def _default_device(self) -> DeviceBackend:
        return OpenCLDeviceBackend()
