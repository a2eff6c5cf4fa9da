"""
CPU backends: scalar reference, partitioned multithreaded and SIMD-vectorized.
"""

from .scalar_engine import ScalarCpuEngine
from .multithreaded_engine import MultiThreadedEngine
from .vectorized_engine import VectorizedCpuEngine

__all__ = ['ScalarCpuEngine', 'MultiThreadedEngine', 'VectorizedCpuEngine']
