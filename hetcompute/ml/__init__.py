"""
ML framework capability flags and passthrough engines.
"""

from .capabilities import MlBackend, MlBackends, detect_ml_backends
from .engines import PassthroughMlEngine, PyTorchEngine, OnnxEngine, TensorFlowEngine

__all__ = [
    'MlBackend', 'MlBackends', 'detect_ml_backends',
    'PassthroughMlEngine', 'PyTorchEngine', 'OnnxEngine', 'TensorFlowEngine',
]
