#!/usr/bin/env python3
"""
Main test runner for the HetCompute test suite.

Checks that the package and its optional accelerator bindings import, then
hands over to pytest. Extra arguments are passed straight to pytest, e.g.
``python run_tests.py -k fft`` or ``python run_tests.py --no-performance``.
"""

import logging
import os
import sys

import pytest

# Add the project root to the Python path
project_root = os.path.abspath(os.path.dirname(__file__))
sys.path.insert(0, project_root)


def report_environment():
    """Print which optional backends are present."""
    print("🚀 HetCompute Test Suite")
    print("=" * 60)

    try:
        import hetcompute
        from hetcompute.gpu import CUDA_AVAILABLE, OPENCL_AVAILABLE, TENSORRT_AVAILABLE
        from hetcompute.simd import detect_capabilities
    except ImportError as e:
        print(f"❌ Failed to import hetcompute: {e}")
        return False

    print(f"✅ hetcompute {hetcompute.__version__} imported successfully")
    capabilities = detect_capabilities()
    print(f"   SIMD: {capabilities.best_instruction_set.name} "
          f"({capabilities.lane_width()} float32 lanes)")
    for name, flag in (("PyCUDA", CUDA_AVAILABLE), ("PyOpenCL", OPENCL_AVAILABLE),
                       ("TensorRT", TENSORRT_AVAILABLE)):
        status = "available" if flag else "not installed, CPU fallback will be tested"
        print(f"   {'✅' if flag else '⚠️ '} {name}: {status}")

    ml = hetcompute.detect_ml_backends()
    print(f"   ML frameworks: {', '.join(ml.available()) or 'none'}")
    print()
    return True


def run_all_tests(argv=None):
    """Run every test module under tests/."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if not report_environment():
        return 1

    args = [os.path.join(project_root, 'tests')]
    if '--no-performance' in argv:
        argv.remove('--no-performance')
        args += ['--ignore', os.path.join(project_root, 'tests', 'performance')]
    return pytest.main(args + argv)


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    sys.exit(run_all_tests())
