#!/usr/bin/env python3
"""
SIMD Detection and Lane Kernel Test Suite
=========================================

Feature-flag parsing, lane width reporting and the strip-mined lane kernels,
including the scalar tail.
"""

import platform

import numpy as np
import pytest

from hetcompute.core.contracts import Operation
from hetcompute.simd import (
    HardwareDetector, SIMDCapabilities, SIMDInstructionSet, detect_capabilities,
    lane_dot, lane_elementwise, lane_matvec, preferred_lane_width,
)


def capabilities(*instruction_sets, features=()):
    return SIMDCapabilities(
        instruction_sets=frozenset(instruction_sets) | {SIMDInstructionSet.SCALAR},
        cache_sizes={'L1': 32 * 1024, 'L2': 256 * 1024, 'L3': 8 * 1024 * 1024},
        cpu_features=frozenset(features),
    )


class TestHardwareDetection:

    @pytest.mark.skipif(platform.system() != 'Linux', reason="cpuinfo parsing is Linux only")
    def test_parses_cpuinfo_flags(self, tmp_path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text(
            "processor\t: 0\n"
            "model name\t: Test CPU\n"
            "flags\t\t: fpu sse2 sse4_2 avx avx2 fma\n"
        )
        features = HardwareDetector.detect_cpu_features(str(cpuinfo))
        assert features == {'sse2', 'sse4_2', 'avx', 'avx2', 'fma'}

    @pytest.mark.skipif(platform.system() != 'Linux', reason="cpuinfo parsing is Linux only")
    def test_arm_asimd_reported_as_neon(self, tmp_path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text("Features\t: fp asimd evtstrm\n")
        assert HardwareDetector.detect_cpu_features(str(cpuinfo)) == {'neon'}

    def test_missing_cpuinfo_falls_back(self, tmp_path):
        features = HardwareDetector.detect_cpu_features(str(tmp_path / "absent"))
        assert isinstance(features, set)

    def test_cache_sizes_have_all_levels(self):
        sizes = HardwareDetector.detect_cache_sizes()
        assert set(sizes) == {'L1', 'L2', 'L3'}
        assert all(size > 0 for size in sizes.values())

    def test_detected_capabilities_are_cached(self):
        assert detect_capabilities() is detect_capabilities()
        assert detect_capabilities().lane_width() >= 1


class TestCapabilities:

    @pytest.mark.parametrize("instruction_sets,best,lanes", [
        ((), SIMDInstructionSet.SCALAR, 2),
        ((SIMDInstructionSet.SSE2,), SIMDInstructionSet.SSE2, 4),
        ((SIMDInstructionSet.SSE2, SIMDInstructionSet.AVX2), SIMDInstructionSet.AVX2, 8),
        ((SIMDInstructionSet.AVX2, SIMDInstructionSet.AVX512F), SIMDInstructionSet.AVX512F, 16),
        ((SIMDInstructionSet.NEON,), SIMDInstructionSet.NEON, 4),
    ])
    def test_best_instruction_set_and_lanes(self, instruction_sets, best, lanes):
        caps = capabilities(*instruction_sets)
        assert caps.best_instruction_set is best
        assert caps.lane_width(32) == lanes

    def test_fma(self):
        assert capabilities(features={'fma'}).has_fma
        assert not capabilities(features={'sse2'}).has_fma

    def test_lane_width_override(self):
        assert preferred_lane_width(3) == 3
        assert preferred_lane_width() == detect_capabilities().lane_width(32)


class TestLaneKernels:

    @pytest.mark.parametrize("n,width", [(0, 4), (3, 4), (8, 4), (13, 4), (17, 8), (5, 1)])
    def test_dot_with_tail(self, n, width, rng):
        a = rng.standard_normal(n).astype(np.float32)
        b = rng.standard_normal(n).astype(np.float32)
        expected = float(a.astype(np.float64) @ b.astype(np.float64))
        assert lane_dot(a, b, width) == pytest.approx(expected, rel=1e-9, abs=1e-9)

    @pytest.mark.parametrize("cols,width", [(4, 4), (7, 4), (2, 8), (19, 8)])
    def test_matvec_with_tail(self, cols, width, rng):
        matrix = rng.standard_normal((6, cols)).astype(np.float32)
        vector = rng.standard_normal(cols).astype(np.float32)
        result = lane_matvec(matrix, vector, width)
        assert result.dtype == np.float32
        np.testing.assert_allclose(result, matrix.astype(np.float64) @ vector, rtol=1e-5, atol=1e-6)

    @pytest.mark.parametrize("op", [Operation.ADD, Operation.MULTIPLY, Operation.SUBTRACT])
    def test_binary_elementwise_with_tail(self, op):
        a = np.arange(1, 11, dtype=np.float32)
        b = np.full(10, 2.0, dtype=np.float32)
        expected = {Operation.ADD: a + b, Operation.MULTIPLY: a * b, Operation.SUBTRACT: a - b}[op]
        np.testing.assert_array_equal(lane_elementwise(op, a, b, 4), expected)

    def test_unary_elementwise_with_tail(self):
        a = np.array([-2, -1, 0, 1, 2, 3, -4], dtype=np.float32)
        result = lane_elementwise(Operation.RELU, a, None, 4)
        assert result.tolist() == [0.0, 0.0, 0.0, 1.0, 2.0, 3.0, 0.0]
