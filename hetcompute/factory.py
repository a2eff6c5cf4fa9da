"""
Backend dispatch and the compute context.

``create_engine`` maps each ComputeBackend to its engine class.
``ComputeContext`` is constructed once by whatever orchestrates workers; it
owns the worker registry, the GPU allocation registry, the ML capability
flags and one cached engine per backend, and tears all of them down in
``shutdown``.
"""

import logging
import threading
from typing import Dict, Optional

from .config import ComputeConfiguration
from .core.contracts import ComputeBackend, ComputeTask
from .core.engine import ComputeEngine, select_backend
from .cpu import MultiThreadedEngine, ScalarCpuEngine, VectorizedCpuEngine
from .gpu import CudaComputeEngine, GpuMemoryManager, OpenCLComputeEngine
from .ml import MlBackends, OnnxEngine, PassthroughMlEngine, PyTorchEngine, TensorFlowEngine, detect_ml_backends
from .worker import ComputeWorker, WorkerManager

logger = logging.getLogger(__name__)


def create_engine(backend: ComputeBackend, config: Optional[ComputeConfiguration] = None,
                  memory_manager: Optional[GpuMemoryManager] = None) -> ComputeEngine:
    """Construct the engine realizing ``backend``"""
    if backend is ComputeBackend.CPU_SINGLE_THREAD:
        return ScalarCpuEngine(config)
    if backend is ComputeBackend.CPU_MULTI_THREAD:
        return MultiThreadedEngine(config)
    if backend is ComputeBackend.CPU_VECTORIZED:
        return VectorizedCpuEngine(config)
    if backend is ComputeBackend.GPU_CUDA:
        return CudaComputeEngine(config, memory_manager=memory_manager)
    if backend is ComputeBackend.GPU_OPENCL:
        return OpenCLComputeEngine(config, memory_manager=memory_manager)
    if backend in (ComputeBackend.GPU_ROCM, ComputeBackend.TPU_CORAL):
        logger.warning("No %s engine available, using the multithreaded CPU engine", backend.name)
        return MultiThreadedEngine(config)
    raise ValueError(f"Unknown backend: {backend!r}")


ML_ENGINES = {
    'pytorch': PyTorchEngine,
    'onnx': OnnxEngine,
    'tensorflow': TensorFlowEngine,
}


def create_ml_engine(framework: str, config: Optional[ComputeConfiguration] = None,
                     ml_backends: Optional[MlBackends] = None) -> PassthroughMlEngine:
    """Construct the passthrough engine for an ML framework"""
    try:
        engine_class = ML_ENGINES[framework.lower()]
    except KeyError:
        raise ValueError(f"Unknown ML framework: {framework!r}") from None
    return engine_class(config, ml_backends)


class ComputeContext:
    """Explicitly owned shared state for a set of workers"""

    def __init__(self, config: Optional[ComputeConfiguration] = None,
                 ml_backends: Optional[MlBackends] = None):
        self.config = config or ComputeConfiguration()
        self.workers = WorkerManager()
        self.memory = GpuMemoryManager()
        self.ml_backends = ml_backends if ml_backends is not None else detect_ml_backends()
        self._engines: Dict[ComputeBackend, ComputeEngine] = {}
        self._ml_engines: Dict[str, PassthroughMlEngine] = {}
        self._lock = threading.Lock()
        self._closed = False

    def get_engine(self, backend: ComputeBackend) -> ComputeEngine:
        """Engine for ``backend``, created on first use"""
        with self._lock:
            if self._closed:
                raise RuntimeError("ComputeContext has been shut down")
            engine = self._engines.get(backend)
            if engine is None:
                engine = create_engine(backend, self.config, self.memory)
                self._engines[backend] = engine
            return engine

    def get_ml_engine(self, framework: str) -> PassthroughMlEngine:
        """Passthrough engine for ``framework``, created on first use"""
        key = framework.lower()
        with self._lock:
            if self._closed:
                raise RuntimeError("ComputeContext has been shut down")
            engine = self._ml_engines.get(key)
            if engine is None:
                engine = create_ml_engine(key, self.config, self.ml_backends)
                self._ml_engines[key] = engine
            return engine

    def select_backend(self, task: ComputeTask) -> ComputeBackend:
        if task.requires_gpu:
            return ComputeBackend.GPU_CUDA
        if task.preferred_backend is not None:
            return task.preferred_backend
        gpu_available = (task.vector_size > self.config.large_task_threshold
                         and self.get_engine(ComputeBackend.GPU_CUDA).is_gpu_available())
        return select_backend(task, gpu_available, self.config.large_task_threshold)

    def engine_for(self, task: ComputeTask) -> ComputeEngine:
        return self.get_engine(self.select_backend(task))

    def create_worker(self, backend: ComputeBackend, result_sink=None,
                      worker_id: Optional[str] = None, capacity: Optional[int] = None) -> ComputeWorker:
        """Build a worker around the cached engine and register it"""
        worker = ComputeWorker(self.get_engine(backend), result_sink=result_sink, worker_id=worker_id)
        worker.register_with(self.workers, capacity)
        return worker

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            engines = list(self._engines.values()) + list(self._ml_engines.values())
            self._engines.clear()
            self._ml_engines.clear()
        self.workers.shutdown()
        for engine in engines:
            try:
                engine.shutdown()
            except Exception as e:
                logger.warning("Error shutting down %s: %s", type(engine).__name__, e)
        self.memory.shutdown()
        logger.info("ComputeContext shut down")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
