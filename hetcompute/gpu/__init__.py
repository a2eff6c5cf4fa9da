"""
GPU backends: device drivers, engines with CPU fallback, buffer tracking and
TensorRT inference.
"""

from .memory_manager import GpuMemoryManager, TrackedAllocation
from .device import (
    DeviceBackend, CudaDeviceBackend, OpenCLDeviceBackend,
    CUDA_AVAILABLE, OPENCL_AVAILABLE,
)
from .tensorrt import TensorRTInference, TENSORRT_AVAILABLE
from .gpu_engine import GpuComputeEngine, CudaComputeEngine, OpenCLComputeEngine

__all__ = [
    'GpuMemoryManager', 'TrackedAllocation',
    'DeviceBackend', 'CudaDeviceBackend', 'OpenCLDeviceBackend',
    'CUDA_AVAILABLE', 'OPENCL_AVAILABLE',
    'TensorRTInference', 'TENSORRT_AVAILABLE',
    'GpuComputeEngine', 'CudaComputeEngine', 'OpenCLComputeEngine',
]
