"""
Standalone numeric kernels: FFT, linear algebra and stable statistics.
"""

from . import fft, linear_algebra, statistics
from .linear_algebra import multiply_matrix_vector, solve_linear_system
from .tasks import ScientificTask

__all__ = [
    'fft', 'linear_algebra', 'statistics',
    'multiply_matrix_vector', 'solve_linear_system',
    'ScientificTask',
]
