"""
Task and result descriptors exchanged with the (external) transport.

ComputeTask and ComputeResult are frozen dataclasses built through fluent
builders. ``to_dict``/``from_dict`` produce and consume the plain-data
shape a dispatcher serializes; the serialization format itself is not our
concern.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

import numpy as np

from .vectors import BatchVector, DenseVector, as_matrix


class ComputeBackend(Enum):
    """Physical execution targets"""
    CPU_SINGLE_THREAD = auto()
    CPU_MULTI_THREAD = auto()
    CPU_VECTORIZED = auto()
    GPU_CUDA = auto()
    GPU_OPENCL = auto()
    GPU_ROCM = auto()
    TPU_CORAL = auto()

    @property
    def is_gpu(self) -> bool:
        return self in (ComputeBackend.GPU_CUDA, ComputeBackend.GPU_OPENCL, ComputeBackend.GPU_ROCM)


class Operation(Enum):
    """Elementwise transform selector"""
    ADD = auto()
    SUBTRACT = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    RELU = auto()
    SIGMOID = auto()
    TANH = auto()

    @property
    def is_unary(self) -> bool:
        """Unary operations only read the first operand"""
        return self in (Operation.RELU, Operation.SIGMOID, Operation.TANH)

    @property
    def is_transcendental(self) -> bool:
        return self in (Operation.SIGMOID, Operation.TANH)


# (flat_input, batch_size, vector_size) -> flat_output of identical length
ComputeKernel = Callable[[np.ndarray, int, int], np.ndarray]


@dataclass(frozen=True, eq=False)
class ComputeTask:
    """Immutable unit of work addressed to a worker"""
    task_id: str
    operation: str
    matrix: Optional[np.ndarray] = None
    vector: Optional[DenseVector] = None
    batch_inputs: Optional[BatchVector] = None
    preferred_backend: Optional[ComputeBackend] = None
    cpu_intensive: bool = False
    requires_gpu: bool = False
    model_path: Optional[str] = None

    @staticmethod
    def builder() -> 'ComputeTaskBuilder':
        return ComputeTaskBuilder()

    @property
    def vector_size(self) -> int:
        if self.vector is not None:
            return self.vector.dimensions
        if self.batch_inputs is not None:
            return self.batch_inputs.dimensions
        return 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'taskId': self.task_id,
            'operation': self.operation,
            'cpuIntensive': self.cpu_intensive,
            'requiresGpu': self.requires_gpu,
        }
        if self.matrix is not None:
            data['matrix'] = self.matrix.tolist()
        if self.vector is not None:
            data['vector'] = self.vector.to_list()
        if self.batch_inputs is not None:
            data['batchInputs'] = self.batch_inputs.to_list()
        if self.preferred_backend is not None:
            data['preferredBackend'] = self.preferred_backend.name
        if self.model_path is not None:
            data['modelPath'] = self.model_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComputeTask':
        builder = cls.builder().task_id(data.get('taskId')).operation(data.get('operation'))
        if data.get('matrix') is not None:
            builder.matrix(data['matrix'])
        if data.get('vector') is not None:
            builder.vector(data['vector'])
        if data.get('batchInputs') is not None:
            builder.batch_inputs(data['batchInputs'])
        if data.get('preferredBackend') is not None:
            builder.preferred_backend(ComputeBackend[data['preferredBackend']])
        return (builder
                .cpu_intensive(bool(data.get('cpuIntensive', False)))
                .requires_gpu(bool(data.get('requiresGpu', False)))
                .model_path(data.get('modelPath'))
                .build())


class ComputeTaskBuilder:
    """Fluent builder for ComputeTask"""

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def task_id(self, task_id: str) -> 'ComputeTaskBuilder':
        self._values['task_id'] = task_id
        return self

    def operation(self, operation: str) -> 'ComputeTaskBuilder':
        self._values['operation'] = operation
        return self

    def matrix(self, matrix) -> 'ComputeTaskBuilder':
        self._values['matrix'] = as_matrix(matrix)
        return self

    def vector(self, vector) -> 'ComputeTaskBuilder':
        self._values['vector'] = vector if isinstance(vector, DenseVector) else DenseVector(vector)
        return self

    def batch_inputs(self, batch) -> 'ComputeTaskBuilder':
        self._values['batch_inputs'] = batch if isinstance(batch, BatchVector) else BatchVector(batch)
        return self

    def preferred_backend(self, backend: Optional[ComputeBackend]) -> 'ComputeTaskBuilder':
        self._values['preferred_backend'] = backend
        return self

    def cpu_intensive(self, flag: bool = True) -> 'ComputeTaskBuilder':
        self._values['cpu_intensive'] = flag
        return self

    def requires_gpu(self, flag: bool = True) -> 'ComputeTaskBuilder':
        self._values['requires_gpu'] = flag
        return self

    def model_path(self, path: Optional[str]) -> 'ComputeTaskBuilder':
        self._values['model_path'] = path
        return self

    def build(self) -> ComputeTask:
        if not self._values.get('task_id'):
            raise ValueError("task_id must not be empty")
        if not self._values.get('operation'):
            raise ValueError("operation must not be empty")
        return ComputeTask(**self._values)


@dataclass(frozen=True)
class ComputeResult:
    """Outcome of exactly one ComputeTask"""
    task_id: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    execution_time_nanos: int = 0
    device_info: str = "unknown"

    @staticmethod
    def builder() -> 'ComputeResultBuilder':
        return ComputeResultBuilder()

    @classmethod
    def failure(cls, task_id: str, error: str, execution_time_nanos: int = 0,
                device_info: str = "unknown") -> 'ComputeResult':
        return (cls.builder()
                .task_id(task_id)
                .success(False)
                .error(error)
                .execution_time_nanos(execution_time_nanos)
                .device_info(device_info)
                .build())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'taskId': self.task_id,
            'success': self.success,
            'executionTimeNanos': self.execution_time_nanos,
            'deviceInfo': self.device_info,
        }
        if self.success:
            data['data'] = _plain(self.data)
        else:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComputeResult':
        return (cls.builder()
                .task_id(data.get('taskId'))
                .success(bool(data.get('success')))
                .data(data.get('data'))
                .error(data.get('error'))
                .execution_time_nanos(int(data.get('executionTimeNanos', 0)))
                .device_info(data.get('deviceInfo', 'unknown'))
                .build())


class ComputeResultBuilder:
    """Fluent builder for ComputeResult"""

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def task_id(self, task_id: str) -> 'ComputeResultBuilder':
        self._values['task_id'] = task_id
        return self

    def success(self, success: bool) -> 'ComputeResultBuilder':
        self._values['success'] = success
        return self

    def data(self, data: Any) -> 'ComputeResultBuilder':
        self._values['data'] = data
        return self

    def error(self, error: Optional[str]) -> 'ComputeResultBuilder':
        self._values['error'] = error
        return self

    def execution_time_nanos(self, nanos: int) -> 'ComputeResultBuilder':
        if nanos < 0:
            raise ValueError("execution_time_nanos must be >= 0")
        self._values['execution_time_nanos'] = nanos
        return self

    def device_info(self, device_info: str) -> 'ComputeResultBuilder':
        self._values['device_info'] = device_info
        return self

    def build(self) -> ComputeResult:
        if not self._values.get('task_id'):
            raise ValueError("task_id must not be empty")
        if 'success' not in self._values:
            raise ValueError("success must be set")
        if self._values['success']:
            self._values['error'] = None
        else:
            if not self._values.get('error'):
                raise ValueError("failed results must carry an error message")
            self._values['data'] = None
        return ComputeResult(**self._values)


@dataclass(frozen=True)
class MLInferenceTask:
    """Inference request against a serialized model"""
    task_id: str
    input: DenseVector
    model_path: str
    requires_gpu: bool = False
    top_k: int = 1

    def __post_init__(self):
        if not self.task_id:
            raise ValueError("task_id must not be empty")
        if self.input is None:
            raise ValueError("input must not be None")
        if not self.model_path:
            raise ValueError("model_path must not be empty")
        if self.top_k < 1:
            raise ValueError("top_k must be >= 1")

    def to_compute_task(self) -> ComputeTask:
        return (ComputeTask.builder()
                .task_id(self.task_id)
                .operation('ml_inference')
                .vector(self.input)
                .model_path(self.model_path)
                .requires_gpu(self.requires_gpu)
                .build())


def _plain(value: Any) -> Any:
    """Convert result payloads into plain lists, floats and dicts"""
    if isinstance(value, (DenseVector, BatchVector)):
        return value.to_list()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
