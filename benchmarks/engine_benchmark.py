#!/usr/bin/env python3
"""
Compute Engine Benchmark
========================

Times matrix-vector multiply and dot product on every CPU engine (and the
GPU engine when a device is present) and reports the deviation of each
result from the scalar reference.

Features:
- Per-engine timing over several runs
- Memory usage tracking
- Hardware capability report
- Agreement check against the scalar engine
"""

import gc
import os
import platform
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import psutil

# Add the project root to the path so the package imports without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from hetcompute import (
    ComputeConfiguration, CudaComputeEngine, DenseVector, MultiThreadedEngine,
    ScalarCpuEngine, VectorizedCpuEngine,
)
from hetcompute.simd import detect_capabilities


@dataclass
class BenchmarkResult:
    """Results from a single benchmark run."""
    engine_name: str
    operation: str
    size: int
    execution_time_ms: float
    memory_usage_mb: float
    max_relative_error: Optional[float] = None


@dataclass
class SystemInfo:
    """Information about the system running the benchmark."""
    cpu_info: str
    logical_cores: int
    memory_gb: float
    python_version: str
    numpy_version: str
    simd: str


class EngineBenchmark:
    """Runs the same workload through each engine"""

    def __init__(self, config: Optional[ComputeConfiguration] = None):
        self.config = config or ComputeConfiguration()
        self.system_info = self._get_system_info()
        self.last_memory_usage = 0.0
        self.engines = {
            "Scalar": ScalarCpuEngine(self.config),
            "Multithreaded": MultiThreadedEngine(self.config),
            "Vectorized": VectorizedCpuEngine(self.config),
        }
        gpu = CudaComputeEngine(self.config)
        if gpu.is_gpu_available():
            self.engines["CUDA"] = gpu
        else:
            gpu.shutdown()

    def _get_system_info(self) -> SystemInfo:
        capabilities = detect_capabilities()
        return SystemInfo(
            cpu_info=platform.processor() or "Unknown CPU",
            logical_cores=psutil.cpu_count(logical=True) or 1,
            memory_gb=psutil.virtual_memory().total / (1024**3),
            python_version=platform.python_version(),
            numpy_version=np.__version__,
            simd=f"{capabilities.best_instruction_set.name} ({capabilities.vector_width_bits}-bit)",
        )

    @contextmanager
    def _memory_tracker(self):
        process = psutil.Process()
        start_memory = process.memory_info().rss / (1024**2)
        try:
            yield
        finally:
            end_memory = process.memory_info().rss / (1024**2)
            self.last_memory_usage = end_memory - start_memory

    def _time(self, name: str, operation: str, size: int, call,
              reference: Optional[np.ndarray]) -> BenchmarkResult:
        gc.collect()
        with self._memory_tracker():
            start = time.perf_counter()
            value = call()
            elapsed = time.perf_counter() - start

        error = None
        if reference is not None:
            result = np.atleast_1d(np.asarray(value, dtype=np.float64))
            scale = np.maximum(np.abs(reference), 1.0)
            error = float(np.max(np.abs(result - reference) / scale))

        return BenchmarkResult(name, operation, size, elapsed * 1000, self.last_memory_usage, error)

    def run(self, size: int = 1000, num_runs: int = 3) -> List[BenchmarkResult]:
        print(f"\n🚀 Engine benchmark, size {size}, {num_runs} runs")
        print("=" * 60)

        rng = np.random.default_rng(42 + size)
        matrix = rng.standard_normal((size, size)).astype(np.float32)
        vector = DenseVector(rng.standard_normal(size).astype(np.float32))
        other = DenseVector(rng.standard_normal(size).astype(np.float32))

        scalar = self.engines["Scalar"]
        matvec_reference = np.asarray(scalar.matrix_vector_multiply(matrix, vector).result().data, dtype=np.float64)
        dot_reference = np.array([scalar.dot_product(vector, other).result()])

        results = []
        for name, engine in self.engines.items():
            print(f"\n📊 {name} ({engine.device_info})")
            for run in range(num_runs):
                matvec = self._time(name, "matrix_vector_multiply", size,
                                    lambda: engine.matrix_vector_multiply(matrix, vector).result().data,
                                    matvec_reference)
                dot = self._time(name, "dot_product", size,
                                 lambda: engine.dot_product(vector, other).result(),
                                 dot_reference)
                results.extend((matvec, dot))
                print(f"  Run {run + 1}/{num_runs}: matvec {matvec.execution_time_ms:.2f}ms "
                      f"(err {matvec.max_relative_error:.1e}), dot {dot.execution_time_ms:.2f}ms "
                      f"(err {dot.max_relative_error:.1e})")
        return results

    def print_system_info(self):
        print("\n💻 System Information")
        print("=" * 40)
        print(f"CPU: {self.system_info.cpu_info} ({self.system_info.logical_cores} logical cores)")
        print(f"Memory: {self.system_info.memory_gb:.1f} GB")
        print(f"Python: {self.system_info.python_version}")
        print(f"NumPy: {self.system_info.numpy_version}")
        print(f"SIMD: {self.system_info.simd}")

    def print_results_summary(self, results: List[BenchmarkResult]):
        if not results:
            print("No results to display")
            return

        print(f"\n📊 Benchmark Results Summary")
        print("=" * 80)
        print(f"{'Engine':<16} {'Operation':<24} {'Best (ms)':<12} {'Mean (ms)':<12} {'Max error':<10}")
        print("-" * 80)

        grouped: Dict[tuple, List[BenchmarkResult]] = {}
        for result in results:
            grouped.setdefault((result.engine_name, result.operation), []).append(result)

        for (engine_name, operation), runs in grouped.items():
            times = [r.execution_time_ms for r in runs]
            worst = max(r.max_relative_error or 0.0 for r in runs)
            print(f"{engine_name:<16} {operation:<24} {min(times):<12.2f} {np.mean(times):<12.2f} {worst:<10.1e}")

    def shutdown(self):
        for engine in self.engines.values():
            engine.shutdown()


def main():
    print("⚡ HetCompute Engine Benchmark")
    print("=" * 50)

    benchmark = EngineBenchmark()
    benchmark.print_system_info()
    try:
        for size in (100, 500, 1000):
            benchmark.print_results_summary(benchmark.run(size=size, num_runs=3))
    finally:
        benchmark.shutdown()

    print(f"\n🏁 Benchmark Complete!")


if __name__ == "__main__":
    main()
