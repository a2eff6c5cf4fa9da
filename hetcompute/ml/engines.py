"""
Framework shim engines.

Math operations run on the scalar CPU path; ``neural_network_inference``
passes its input through, logging whether the framework was detected.
Model execution itself is not provided.
"""

import logging
from typing import Optional

import numpy as np

from ..config import ComputeConfiguration
from ..cpu.scalar_engine import ScalarCpuEngine
from .capabilities import MlBackend, MlBackends

logger = logging.getLogger(__name__)


class PassthroughMlEngine(ScalarCpuEngine):
    """Capability-probed shim for one ML framework"""

    framework = "none"

    def __init__(self, config: Optional[ComputeConfiguration] = None,
                 ml_backends: Optional[MlBackends] = None):
        super().__init__(config)
        backends = ml_backends or MlBackends()
        self.availability: MlBackend = backends.get(self.framework)
        logger.info("%s engine created (framework %s)", self.framework, self.availability.value)

    @property
    def framework_available(self) -> bool:
        return bool(self.availability)

    @property
    def device_info(self) -> str:
        return f"{self.framework}-passthrough"

    def _neural_network_inference(self, data: np.ndarray, model_path: Optional[str]) -> np.ndarray:
        if self.framework_available:
            logger.debug("%s detected; model '%s' not executed, passing input through",
                         self.framework, model_path)
        else:
            logger.warning("%s not available; passing input through for model '%s'",
                           self.framework, model_path)
        return data.copy()


class PyTorchEngine(PassthroughMlEngine):
    framework = "pytorch"


class OnnxEngine(PassthroughMlEngine):
    framework = "onnx"


class TensorFlowEngine(PassthroughMlEngine):
    framework = "tensorflow"
