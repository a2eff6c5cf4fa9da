#!/usr/bin/env python3
"""
Compute Worker Test Suite
=========================

Operation dispatch, failure conversion and the queue-driven worker loop.
"""

import math
import queue
import threading

import numpy as np
import pytest

from hetcompute.config import ComputeConfiguration
from hetcompute.core.contracts import ComputeTask, MLInferenceTask
from hetcompute.core.vectors import DenseVector
from hetcompute.cpu import MultiThreadedEngine, ScalarCpuEngine
from hetcompute.science import linear_algebra
from hetcompute.science.tasks import ScientificTask
from hetcompute.worker import ComputeWorker, WorkerManager


def task(operation, **fields):
    builder = ComputeTask.builder().task_id(f"task-{operation}").operation(operation)
    for name, value in fields.items():
        getattr(builder, name)(value)
    return builder.build()


class TestDispatch:

    @classmethod
    def setup_class(cls):
        cls.engine = ScalarCpuEngine()
        cls.worker = ComputeWorker(cls.engine, worker_id='scalar-test')

    @classmethod
    def teardown_class(cls):
        cls.engine.shutdown()

    def run(self, compute_task):
        result = self.worker.process(compute_task)
        assert result.task_id == compute_task.task_id
        assert result.device_info == self.engine.device_info
        assert result.execution_time_nanos >= 0
        return result

    def test_matrix_vector_multiply(self):
        result = self.run(task('matrix_vector_multiply', matrix=[[1, 2], [3, 4]], vector=[1, 1]))
        assert result.success
        assert result.data == DenseVector([3.0, 7.0])
        assert result.to_dict()['data'] == [3.0, 7.0]

    def test_dot_and_cosine_use_first_batch_vector(self):
        dot = self.run(task('dot_product', vector=[1, 2, 3], batch_inputs=[[4, 5, 6]]))
        assert dot.data == 32.0
        cosine = self.run(task('cosine_similarity', vector=[1, 0], batch_inputs=[[0, 1]]))
        assert cosine.data == pytest.approx(0.0)

    @pytest.mark.parametrize("operation,batch,expected", [
        ('elementwise_add', [[1, 1, 1]], [0.0, 1.0, 3.0]),
        ('elementwise_relu', None, [0.0, 0.0, 2.0]),
        ('elementwise_DIVIDE', [[0, 1, 2]], [math.nan, 0.0, 1.0]),
    ])
    def test_elementwise(self, operation, batch, expected):
        fields = {'vector': [-1, 0, 2]}
        if batch is not None:
            fields['batch_inputs'] = batch
        result = self.run(task(operation, **fields))
        assert result.success
        np.testing.assert_array_equal(result.data.data, np.array(expected, dtype=np.float32))

    def test_batch_operation(self):
        result = self.run(task('batch_relu', batch_inputs=[[-1, 2], [3, -4]]))
        assert result.data.to_list() == [[0.0, 2.0], [3.0, 0.0]]

    def test_batch_binary_operation_fails(self):
        result = self.run(task('batch_add', batch_inputs=[[1, 2]]))
        assert not result.success
        assert 'unary' in result.error

    def test_ml_inference_passthrough(self):
        inference = MLInferenceTask('ml-1', DenseVector([0.5, 1.5]), 'model.onnx').to_compute_task()
        result = self.run(inference)
        assert result.success
        assert result.data.to_list() == [0.5, 1.5]

    def test_fft_and_inverse(self):
        forward = self.run(task('fft', vector=[1, 0, 0, 0]))
        assert forward.data == {'real': [1.0, 1.0, 1.0, 1.0], 'imag': [0.0, 0.0, 0.0, 0.0]}

        inverse = self.run(task('inverse_fft', batch_inputs=[[1, 1, 1, 1], [0, 0, 0, 0]]))
        assert inverse.data['real'] == pytest.approx([1.0, 0.0, 0.0, 0.0])

    def test_fft_bad_length_fails(self):
        result = self.run(task('fft', vector=[1, 2, 3]))
        assert not result.success
        assert 'power of two' in result.error

    def test_solve_linear_system(self):
        scientific = ScientificTask('solve', 'solve_linear_system', input_vector=DenseVector([3.0, 5.0]),
                                    parameters={'matrix': [[2.0, 1.0], [1.0, 3.0]]})
        result = self.run(scientific.to_compute_task())
        assert result.data == pytest.approx([0.8, 1.4])

    def test_blocked_multiply_as_scientific_task(self):
        scientific = ScientificTask('blocked', 'blocked_matrix_vector_multiply',
                                    input_vector=DenseVector([1.0, 1.0]),
                                    parameters={'matrix': [[1.0, 2.0], [3.0, 4.0]]})
        result = self.run(scientific.to_compute_task())
        assert result.data.to_list() == [3.0, 7.0]

    def test_singular_system_fails(self):
        result = self.run(task('solve_linear_system', matrix=[[1, 2], [2, 4]], vector=[1, 2]))
        assert not result.success
        assert 'singular' in result.error

    def test_statistics(self):
        result = self.run(task('statistics', vector=[1, 2, 3, 4], batch_inputs=[[2, 4, 6, 8]]))
        assert result.data['count'] == 4
        assert result.data['mean'] == pytest.approx(2.5)
        assert result.data['variance'] == pytest.approx(1.25)
        assert result.data['correlation'] == pytest.approx(1.0)

    def test_unknown_operation_fails(self):
        result = self.run(task('transpose', vector=[1]))
        assert not result.success
        assert 'transpose' in result.error

    def test_missing_operand_fails(self):
        result = self.run(task('dot_product', vector=[1, 2]))
        assert not result.success
        assert 'batch_inputs' in result.error

    def test_dimension_mismatch_fails(self):
        result = self.run(task('dot_product', vector=[1, 2], batch_inputs=[[1, 2, 3]]))
        assert not result.success
        assert result.data is None


class TestWorkerLoop:

    def test_results_published_to_sink(self):
        published = queue.Queue()
        with MultiThreadedEngine() as engine:
            worker = ComputeWorker(engine, result_sink=published.put)
            worker.start()
            worker.start()
            worker.submit(task('dot_product', vector=[1, 2], batch_inputs=[[3, 4]]))
            worker.submit(task('fft', vector=[1, 2, 3]))
            first = published.get(timeout=10)
            second = published.get(timeout=10)
            worker.stop(timeout=10)

        assert first.success and first.data == 11.0
        assert not second.success
        assert worker.processed == 2
        assert not worker.running

    def test_results_queue_without_sink(self):
        with ScalarCpuEngine() as engine:
            worker = ComputeWorker(engine)
            worker.start()
            worker.submit(task('elementwise_tanh', vector=[0.0]))
            result = worker.results.get(timeout=10)
            worker.stop(timeout=10)
        assert result.data.to_list() == [0.0]

    def test_failing_sink_does_not_kill_worker(self):
        delivered = queue.Queue()
        calls = []

        def sink(result):
            calls.append(result.task_id)
            if len(calls) == 1:
                raise ConnectionError("transport down")
            delivered.put(result)

        with ScalarCpuEngine() as engine:
            worker = ComputeWorker(engine, result_sink=sink)
            worker.start()
            worker.submit(task('elementwise_relu', vector=[1.0]))
            worker.submit(task('elementwise_relu', vector=[-1.0]))
            result = delivered.get(timeout=10)
            worker.stop(timeout=10)
        assert result.data.to_list() == [0.0]

    def test_registers_with_manager(self):
        manager = WorkerManager()
        with ScalarCpuEngine() as engine:
            worker = ComputeWorker(engine, worker_id='managed')
            worker.register_with(manager, capacity=3)

            assert manager.start_worker('managed')
            assert worker.running
            assert manager.get_worker_statuses()['managed'].capacity == 3

            assert manager.unregister_worker('managed')
            assert not worker.running

    def test_default_worker_id_names_backend(self):
        with ScalarCpuEngine() as engine:
            assert ComputeWorker(engine).worker_id.startswith('cpu-single-thread-worker-')

    def test_unprocessable_item_does_not_kill_worker(self):
        with ScalarCpuEngine() as engine:
            worker = ComputeWorker(engine)
            worker.start()
            worker.submit("not a task")
            worker.submit(task('elementwise_relu', vector=[-2.0]))
            result = worker.results.get(timeout=10)
            assert worker.running
            worker.stop(timeout=10)
        assert result.data.to_list() == [0.0]

    def test_registered_stop_uses_shutdown_timeout(self):
        manager = WorkerManager()
        timeouts = []
        with ScalarCpuEngine(ComputeConfiguration(shutdown_timeout=1.5)) as engine:
            worker = ComputeWorker(engine, worker_id='timed')
            worker.register_with(manager)
            real_stop = worker.stop

            def recording_stop(timeout=None):
                timeouts.append(timeout)
                real_stop(timeout)

            worker.stop = recording_stop
            assert manager.start_worker('timed')
            assert manager.stop_worker('timed')
        assert timeouts == [1.5]
        assert not worker.running


class TestEngineConfiguration:

    def test_blocked_multiply_uses_engine_blocking(self, monkeypatch, rng):
        calls = []
        blocked = linear_algebra.multiply_matrix_vector

        def recording(matrix, vector, **kwargs):
            calls.append(kwargs)
            return blocked(matrix, vector, **kwargs)

        monkeypatch.setattr(linear_algebra, 'multiply_matrix_vector', recording)
        matrix = rng.standard_normal((10, 9)).astype(np.float32)
        vector = rng.standard_normal(9).astype(np.float32)
        config = ComputeConfiguration(block_size=4, blocking_threshold=16)

        with ScalarCpuEngine(config) as engine:
            result = ComputeWorker(engine).process(
                task('blocked_matrix_vector_multiply', matrix=matrix, vector=vector))

        assert result.success
        assert calls == [{'block_size': 4, 'blocking_threshold': 16}]
        np.testing.assert_allclose(result.data.data, matrix.astype(np.float64) @ vector, rtol=1e-5, atol=1e-5)

    def test_processed_count_under_concurrent_calls(self):
        with ScalarCpuEngine() as engine:
            worker = ComputeWorker(engine)
            compute_task = task('statistics', vector=[1.0, 2.0])

            def run():
                for _ in range(50):
                    worker.process(compute_task)

            threads = [threading.Thread(target=run) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        assert worker.processed == 400
