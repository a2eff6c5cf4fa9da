#!/usr/bin/env python3
"""
CPU Engine Test Suite
=====================

Shared contract behavior of the scalar, multithreaded and vectorized
engines: synchronous validation, elementwise semantics, batch kernels,
convolution, cosine similarity and lifecycle.
"""

import math
import threading

import numpy as np
import pytest

from hetcompute.config import ComputeConfiguration
from hetcompute.core.contracts import ComputeBackend, ComputeTask, Operation
from hetcompute.core.engine import partition_ranges, select_backend
from hetcompute.core.vectors import BatchVector, DenseVector
from hetcompute.cpu import MultiThreadedEngine, ScalarCpuEngine, VectorizedCpuEngine
from hetcompute.errors import DimensionMismatchError, UnsupportedOperationError

ENGINE_CLASSES = [ScalarCpuEngine, MultiThreadedEngine, VectorizedCpuEngine]


@pytest.fixture(params=ENGINE_CLASSES, ids=lambda cls: cls.__name__)
def engine(request):
    # small thresholds so the fork/join and partition paths run on small inputs
    config = ComputeConfiguration(dot_product_split_threshold=8, matrix_split_threshold=2,
                                  preferred_lane_width=4)
    instance = request.param(config)
    yield instance
    instance.shutdown()


class TestValidation:

    def test_dot_product_dimension_mismatch_is_synchronous(self, engine):
        with pytest.raises(DimensionMismatchError):
            engine.dot_product([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_elementwise_dimension_mismatch_is_synchronous(self, engine):
        with pytest.raises(DimensionMismatchError):
            engine.elementwise_operation([1.0, 2.0], [1.0], Operation.ADD)

    def test_matrix_vector_mismatch(self, engine):
        with pytest.raises(DimensionMismatchError) as excinfo:
            engine.matrix_vector_multiply([[1, 2, 3]], [1, 2])
        assert excinfo.value.expected == 3
        assert excinfo.value.actual == 2

    def test_unknown_operation(self, engine):
        with pytest.raises(UnsupportedOperationError):
            engine.elementwise_operation([1.0], [1.0], 'modulo')

    def test_convolution_channel_mismatch(self, engine):
        with pytest.raises(DimensionMismatchError):
            engine.convolution2d(np.zeros((4, 4, 2)), np.zeros((3, 3, 3)))

    def test_batch_requires_callable(self, engine):
        with pytest.raises(TypeError):
            engine.batch_process([[1.0]], None)

    def test_binary_operation_requires_second_operand(self, engine):
        with pytest.raises(ValueError):
            engine.elementwise_operation([1.0], None, Operation.MULTIPLY)


class TestArithmetic:

    def test_matrix_vector_multiply(self, engine):
        result = engine.matrix_vector_multiply([[1, 2], [3, 4]], [1, 1]).result(timeout=10)
        assert result.to_list() == [3.0, 7.0]

    def test_matrix_vector_multiply_many_rows(self, engine, rng):
        matrix = rng.standard_normal((37, 13)).astype(np.float32)
        vector = rng.standard_normal(13).astype(np.float32)
        expected = matrix.astype(np.float64) @ vector.astype(np.float64)
        result = engine.matrix_vector_multiply(matrix, vector).result(timeout=10)
        np.testing.assert_allclose(result.data, expected, rtol=1e-5, atol=1e-5)

    def test_dot_product(self, engine, rng):
        a = rng.standard_normal(101).astype(np.float32)
        b = rng.standard_normal(101).astype(np.float32)
        expected = float(np.dot(a.astype(np.float64), b.astype(np.float64)))
        assert engine.dot_product(a, b).result(timeout=10) == pytest.approx(expected, rel=1e-5, abs=1e-5)

    @pytest.mark.parametrize("op,a,b,expected", [
        (Operation.ADD, [1, 2, 3], [4, 5, 6], [5, 7, 9]),
        (Operation.SUBTRACT, [1, 2, 3], [4, 5, 6], [-3, -3, -3]),
        (Operation.MULTIPLY, [1, 2, 3], [4, 5, 6], [4, 10, 18]),
        (Operation.DIVIDE, [1, 4, 9], [1, 2, 3], [1, 2, 3]),
        (Operation.RELU, [-1, 0, 2], None, [0, 0, 2]),
    ])
    def test_elementwise(self, engine, op, a, b, expected):
        result = engine.elementwise_operation(a, b, op).result(timeout=10)
        assert result.to_list() == [float(x) for x in expected]

    def test_divide_by_zero_is_nan(self, engine):
        result = engine.elementwise_operation([1.0, 2.0, 0.0], [0.0, 2.0, 0.0], Operation.DIVIDE).result(timeout=10)
        values = result.to_list()
        assert math.isnan(values[0])
        assert values[1] == 1.0
        assert math.isnan(values[2])

    def test_sigmoid_and_tanh(self, engine):
        sigmoid = engine.elementwise_operation([0.0, 800.0, -800.0], None, 'sigmoid').result(timeout=10)
        assert sigmoid.to_list() == [0.5, 1.0, 0.0]

        tanh = engine.elementwise_operation([0.0, 1.0], None, Operation.TANH).result(timeout=10)
        assert tanh.data[0] == 0.0
        assert tanh.data[1] == pytest.approx(math.tanh(1.0), rel=1e-6)

    def test_long_elementwise_crosses_lane_tails(self, engine, rng):
        a = rng.standard_normal(1031).astype(np.float32)
        b = rng.standard_normal(1031).astype(np.float32)
        result = engine.elementwise_operation(a, b, Operation.MULTIPLY).result(timeout=10)
        np.testing.assert_allclose(result.data, (a.astype(np.float64) * b).astype(np.float32), rtol=1e-6)

    def test_cosine_similarity(self, engine):
        assert engine.cosine_similarity([1, 0], [0, 1]).result(timeout=10) == pytest.approx(0.0)
        assert engine.cosine_similarity([1, 2, 3], [2, 4, 6]).result(timeout=10) == pytest.approx(1.0, rel=1e-6)
        assert engine.cosine_similarity([0, 0], [1, 1]).result(timeout=10) == 0.0


class TestBatchAndConvolution:

    def test_batch_kernel_per_vector(self, engine):
        def kernel(flat, batch_size, vector_size):
            assert batch_size == 1
            return flat * 2.0 + vector_size

        batch = BatchVector([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        result = engine.batch_process(batch, kernel).result(timeout=10)
        assert result.to_list() == [[4.0, 6.0], [8.0, 10.0], [12.0, 14.0]]

    def test_kernel_changing_length_fails(self, engine):
        future = engine.batch_process([[1.0, 2.0]], lambda flat, n, d: flat[:1])
        with pytest.raises(DimensionMismatchError):
            future.result(timeout=10)

    def test_kernel_exception_propagates(self, engine):
        def kernel(flat, batch_size, vector_size):
            raise KeyError("bad kernel")

        future = engine.batch_process([[1.0], [2.0]], kernel)
        with pytest.raises(KeyError):
            future.result(timeout=10)

    def test_convolution_identity_filter(self, engine, rng):
        image = rng.standard_normal((5, 4, 1)).astype(np.float32)
        filters = np.zeros((1, 3, 3), dtype=np.float32)
        filters[0, 1, 1] = 1.0
        result = engine.convolution2d(image, filters).result(timeout=10)
        np.testing.assert_allclose(result.data, image[:, :, 0].reshape(-1), rtol=1e-6)

    def test_convolution_sums_channels_with_zero_padding(self, engine):
        image = np.ones((3, 3, 2), dtype=np.float32)
        filters = np.ones((2, 3, 3), dtype=np.float32)
        result = engine.convolution2d(image, filters).result(timeout=10)
        # corners see 4 cells, edges 6, center 9, per channel
        expected = 2.0 * np.array([4, 6, 4, 6, 9, 6, 4, 6, 4], dtype=np.float32)
        np.testing.assert_array_equal(result.data, expected)


class TestEngineLifecycle:

    def test_inference_passthrough(self, engine):
        result = engine.neural_network_inference([1.0, 2.0], 'model.onnx').result(timeout=10)
        assert result.to_list() == [1.0, 2.0]

    def test_capabilities(self, engine):
        assert not engine.is_gpu_available()
        stats = engine.get_performance_stats()
        assert stats.gpu_available is False
        assert stats.active_devices == 0
        assert engine.device_info.startswith("cpu")

    def test_shutdown_rejects_new_work(self, engine):
        engine.shutdown()
        engine.shutdown()
        with pytest.raises(RuntimeError):
            engine.dot_product([1.0], [1.0])

    def test_profiling(self):
        with ScalarCpuEngine(ComputeConfiguration(enable_profiling=True)) as profiled:
            profiled.dot_product([1.0, 2.0], [3.0, 4.0]).result(timeout=10)
            profiled.dot_product([1.0, 2.0], [3.0, 4.0]).result(timeout=10)
            profile = profiled.get_profile()
        assert profile['operation_count'] == 2
        assert set(profile['operation_times']) == {'dot_product'}


class TestMultiThreadedEngine:

    @pytest.mark.parametrize("use_thread_per_task", [False, True])
    def test_substrates_agree(self, use_thread_per_task, rng):
        matrix = rng.standard_normal((64, 32)).astype(np.float32)
        vector = rng.standard_normal(32).astype(np.float32)
        with MultiThreadedEngine(ComputeConfiguration(use_thread_per_task=use_thread_per_task)) as engine:
            assert engine.substrate == ("thread-per-task" if use_thread_per_task else "thread-pool")
            result = engine.matrix_vector_multiply(matrix, vector).result(timeout=10)
        np.testing.assert_allclose(result.data, matrix.astype(np.float64) @ vector, rtol=1e-5, atol=1e-5)

    def test_partitions_run_on_named_threads(self):
        seen = set()
        lock = threading.Lock()

        def kernel(flat, batch_size, vector_size):
            with lock:
                seen.add(threading.current_thread().name)
            return flat

        with MultiThreadedEngine(name="probe") as engine:
            engine.batch_process([[float(i)] for i in range(engine.partitions)], kernel).result(timeout=10)
        assert seen
        assert all(name.startswith("probe-batch-") for name in seen)

    def test_concurrent_calls_do_not_deadlock(self, rng):
        a = rng.standard_normal(4096).astype(np.float32)
        with MultiThreadedEngine() as engine:
            futures = [engine.dot_product(a, a) for _ in range(4 * engine.cores)]
            values = [f.result(timeout=30) for f in futures]
        assert len(set(values)) == 1


class TestPartitioning:

    @pytest.mark.parametrize("size,partitions", [(10, 3), (7, 7), (5, 16), (1000, 8)])
    def test_ranges_cover_without_overlap(self, size, partitions):
        ranges = partition_ranges(size, partitions)
        assert ranges[0][0] == 0
        assert ranges[-1][1] == size
        assert all(prev[1] == nxt[0] for prev, nxt in zip(ranges, ranges[1:]))
        assert len(ranges) <= min(size, partitions)

    def test_empty(self):
        assert partition_ranges(0) == []


class TestBackendSelection:

    def _task(self, size, cpu_intensive=False):
        return (ComputeTask.builder().task_id('t').operation('dot_product')
                .vector(np.ones(size)).cpu_intensive(cpu_intensive).build())

    def test_large_task_prefers_gpu_when_available(self):
        assert select_backend(self._task(20000), gpu_available=True) is ComputeBackend.GPU_CUDA
        assert select_backend(self._task(20000), gpu_available=False, cores=1) is ComputeBackend.CPU_SINGLE_THREAD

    def test_cpu_intensive_needs_more_than_four_cores(self):
        assert select_backend(self._task(10, True), False, cores=8) is ComputeBackend.CPU_MULTI_THREAD
        assert select_backend(self._task(10, True), False, cores=4) is ComputeBackend.CPU_SINGLE_THREAD

    def test_no_task(self):
        assert select_backend(None, True) is ComputeBackend.CPU_SINGLE_THREAD


class TestOperandIsolation:
    """Operands are captured at call time, later caller writes are not seen"""

    def setup_method(self):
        self.gate = threading.Event()
        self.engine = ScalarCpuEngine()
        # occupy the single worker so the next call stays queued
        self.blocker = self.engine.batch_process([[0.0]], self._hold)

    def teardown_method(self):
        self.gate.set()
        self.engine.shutdown()

    def _hold(self, flat, batch_size, vector_size):
        self.gate.wait(10)
        return flat

    def test_matrix_mutated_after_submission(self):
        matrix = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)
        pending = self.engine.matrix_vector_multiply(matrix, [1.0, 1.0])
        matrix[:] = 0.0
        self.gate.set()
        self.blocker.result(timeout=10)
        assert pending.result(timeout=10).to_list() == [3.0, 7.0]

    def test_convolution_operands_mutated_after_submission(self):
        image = np.ones((3, 3, 1), dtype=np.float32)
        filters = np.ones((1, 3, 3), dtype=np.float32)
        pending = self.engine.convolution2d(image, filters)
        image[:] = 0.0
        filters[:] = 0.0
        self.gate.set()
        self.blocker.result(timeout=10)
        assert pending.result(timeout=10).to_list() == [4.0, 6.0, 4.0, 6.0, 9.0, 6.0, 4.0, 6.0, 4.0]
