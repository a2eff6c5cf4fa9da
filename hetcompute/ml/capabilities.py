"""
ML framework availability flags.

Availability is decided once (``detect_ml_backends``) by looking the
framework packages up without importing them, then injected into whatever
needs it. Engines never re-probe.
"""

import importlib.util
import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class MlBackend(Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"

    @classmethod
    def of(cls, flag: bool) -> 'MlBackend':
        return cls.AVAILABLE if flag else cls.UNAVAILABLE

    def __bool__(self) -> bool:
        return self is MlBackend.AVAILABLE


# framework name -> importable module
FRAMEWORK_MODULES = {
    'pytorch': 'torch',
    'onnx': 'onnxruntime',
    'tensorflow': 'tensorflow',
    'tensorrt': 'tensorrt',
}


@dataclass(frozen=True)
class MlBackends:
    pytorch: MlBackend = MlBackend.UNAVAILABLE
    onnx: MlBackend = MlBackend.UNAVAILABLE
    tensorflow: MlBackend = MlBackend.UNAVAILABLE
    tensorrt: MlBackend = MlBackend.UNAVAILABLE

    def get(self, framework: str) -> MlBackend:
        return getattr(self, framework, MlBackend.UNAVAILABLE)

    def available(self):
        return [name for name in FRAMEWORK_MODULES if self.get(name)]


def _module_present(module: str) -> bool:
    try:
        return importlib.util.find_spec(module) is not None
    except (ImportError, ValueError):
        return False


def detect_ml_backends() -> MlBackends:
    """Probe the environment for every supported framework"""
    flags = {name: MlBackend.of(_module_present(module)) for name, module in FRAMEWORK_MODULES.items()}
    backends = MlBackends(**flags)
    logger.info("ML backends available: %s", backends.available() or "none")
    return backends
