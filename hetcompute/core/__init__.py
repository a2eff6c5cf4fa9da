"""
Core contracts: vectors, task/result descriptors, the engine contract and
the cancel-on-failure fan-out primitive.
"""

from .vectors import DenseVector, BatchVector, as_matrix
from .contracts import (
    ComputeBackend, Operation, ComputeKernel,
    ComputeTask, ComputeTaskBuilder, ComputeResult, ComputeResultBuilder,
    MLInferenceTask,
)
from .concurrency import (
    invoke_all_cancel_on_failure, current_cancel_event, is_cancelled,
    ThreadPerTaskExecutor,
)
from .engine import (
    ComputeEngine, ComputeStats, logical_cores, partition_ranges,
    select_backend, apply_operation, scalar_operation,
)

__all__ = [
    'DenseVector', 'BatchVector', 'as_matrix',
    'ComputeBackend', 'Operation', 'ComputeKernel',
    'ComputeTask', 'ComputeTaskBuilder', 'ComputeResult', 'ComputeResultBuilder',
    'MLInferenceTask',
    'invoke_all_cancel_on_failure', 'current_cancel_event', 'is_cancelled',
    'ThreadPerTaskExecutor',
    'ComputeEngine', 'ComputeStats', 'logical_cores', 'partition_ranges',
    'select_backend', 'apply_operation', 'scalar_operation',
]
