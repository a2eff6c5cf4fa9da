"""
SIMD lane detection and lane kernels for the vectorized CPU engine.
"""

from .simd_core import (
    SIMDInstructionSet, SIMDCapabilities, HardwareDetector,
    detect_capabilities, preferred_lane_width,
)
from .lanes import lane_dot, lane_matvec, lane_elementwise

__all__ = [
    'SIMDInstructionSet', 'SIMDCapabilities', 'HardwareDetector',
    'detect_capabilities', 'preferred_lane_width',
    'lane_dot', 'lane_matvec', 'lane_elementwise',
]
