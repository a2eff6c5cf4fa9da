"""
HetCompute Package

Heterogeneous numeric compute engine: one engine contract realized by a
scalar CPU reference, a partitioned multithreaded CPU engine, a
SIMD-lane CPU engine and GPU engines with CPU fallback, plus the worker
plumbing that turns ComputeTasks into ComputeResults.

Architecture:
    hetcompute/
    ├── core/        # Vectors, task/result contracts, engine contract, fan-out
    ├── cpu/         # Scalar, multithreaded and vectorized engines
    ├── simd/        # Lane detection and lane kernels
    ├── gpu/         # Device drivers, GPU engines, buffer tracking, TensorRT
    ├── ml/          # ML framework flags and passthrough engines
    ├── science/     # FFT, linear algebra, statistics
    └── worker/      # Worker registry and task-pulling worker

License: MIT
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .errors import (
    ComputeError, DimensionMismatchError, SingularMatrixError,
    InvalidTransformLengthError, DeviceUnavailableError,
    UnsupportedOperationError, WorkerRegistrationError,
)
from .config import ComputeConfiguration, configure_logging
from .core import (
    DenseVector, BatchVector, ComputeBackend, Operation,
    ComputeTask, ComputeResult, MLInferenceTask, ComputeEngine,
    invoke_all_cancel_on_failure,
)
from .cpu import ScalarCpuEngine, MultiThreadedEngine, VectorizedCpuEngine
from .gpu import GpuMemoryManager, GpuComputeEngine, CudaComputeEngine, OpenCLComputeEngine
from .ml import MlBackend, MlBackends, detect_ml_backends
from .science import ScientificTask
from .worker import WorkerManager, ComputeWorker
from .factory import ComputeContext, create_engine, create_ml_engine

__all__ = [
    'ComputeError', 'DimensionMismatchError', 'SingularMatrixError',
    'InvalidTransformLengthError', 'DeviceUnavailableError',
    'UnsupportedOperationError', 'WorkerRegistrationError',
    'ComputeConfiguration', 'configure_logging',
    'DenseVector', 'BatchVector', 'ComputeBackend', 'Operation',
    'ComputeTask', 'ComputeResult', 'MLInferenceTask', 'ComputeEngine',
    'invoke_all_cancel_on_failure',
    'ScalarCpuEngine', 'MultiThreadedEngine', 'VectorizedCpuEngine',
    'GpuMemoryManager', 'GpuComputeEngine', 'CudaComputeEngine', 'OpenCLComputeEngine',
    'MlBackend', 'MlBackends', 'detect_ml_backends',
    'ScientificTask',
    'WorkerManager', 'ComputeWorker',
    'ComputeContext', 'create_engine', 'create_ml_engine',
]
