"""
TensorRT inference wrapper.

Detects the TensorRT runtime and deserializes the engine file when both are
present. Execution bindings are not wired, so ``execute`` always returns a
copy of its input; callers rely on that passthrough to keep worker loops
alive when no accelerator runtime is installed.
"""

import logging
import os
from typing import Any, Optional

import numpy as np

logger = logging.getLogger(__name__)

try:
    import tensorrt as trt
    TENSORRT_AVAILABLE = True
except ImportError:
    trt = None
    TENSORRT_AVAILABLE = False


class TensorRTInference:
    """Serialized TensorRT engine bound to one device"""

    def __init__(self, engine_path: str, device_id: int = 0, runtime_available: Optional[bool] = None):
        if not engine_path:
            raise ValueError("engine_path must not be empty")
        self.engine_path = engine_path
        self.device_id = device_id
        self._engine: Any = None
        self.available = TENSORRT_AVAILABLE if runtime_available is None else runtime_available

        if self.available:
            try:
                self._engine = self._load_engine()
            except Exception as e:
                logger.error("Failed to load TensorRT engine '%s': %s", engine_path, e)
                self.available = False
        else:
            logger.warning("TensorRT runtime not found, inference for '%s' will pass through", engine_path)

    def _load_engine(self) -> Any:
        if not os.path.isfile(self.engine_path):
            raise FileNotFoundError(self.engine_path)
        runtime = trt.Runtime(trt.Logger(trt.Logger.WARNING))
        with open(self.engine_path, 'rb') as f:
            engine = runtime.deserialize_cuda_engine(f.read())
        if engine is None:
            raise RuntimeError("deserialization returned no engine")
        logger.info("Loaded TensorRT engine '%s' on device %d", self.engine_path, self.device_id)
        return engine

    def is_available(self) -> bool:
        return self.available

    def execute(self, data: np.ndarray) -> np.ndarray:
        if data is None:
            raise ValueError("input must not be None")
        if not self.available:
            logger.warning("TensorRT not available, passing input through")
        else:
            logger.debug("TensorRT engine '%s' loaded but execution is not bound, passing input through",
                         self.engine_path)
        return np.array(data, dtype=np.float32, copy=True)

    def close(self) -> None:
        self._engine = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
