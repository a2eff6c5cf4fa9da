"""
Worker lifecycle registry and the task-pulling compute worker.
"""

from .manager import WorkerManager, WorkerHandle, WorkerInfo
from .compute_worker import ComputeWorker

__all__ = ['WorkerManager', 'WorkerHandle', 'WorkerInfo', 'ComputeWorker']
