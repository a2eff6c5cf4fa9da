"""
Scientific task descriptor, converted to a ComputeTask for dispatch.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..core.contracts import ComputeTask
from ..core.vectors import BatchVector, DenseVector

TASK_TYPES = ('fft', 'inverse_fft', 'solve_linear_system', 'statistics',
              'blocked_matrix_vector_multiply')


@dataclass(frozen=True, eq=False)
class ScientificTask:
    task_id: str
    task_type: str
    input_vector: Optional[DenseVector] = None
    batch_input: Optional[BatchVector] = None
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.task_id:
            raise ValueError("task_id must not be empty")
        if self.task_type not in TASK_TYPES:
            raise ValueError(f"task_type must be one of {TASK_TYPES}, got {self.task_type!r}")
        object.__setattr__(self, 'parameters', MappingProxyType(dict(self.parameters)))

    def to_compute_task(self) -> ComputeTask:
        builder = ComputeTask.builder().task_id(self.task_id).operation(self.task_type)
        if self.input_vector is not None:
            builder.vector(self.input_vector)
        if self.batch_input is not None:
            builder.batch_inputs(self.batch_input)
        if 'matrix' in self.parameters:
            builder.matrix(self.parameters['matrix'])
        return builder.cpu_intensive(bool(self.parameters.get('cpu_intensive', False))).build()
