"""
Pytest configuration for HetCompute tests
This file configures paths and shared fixtures for all tests
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Get the project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Add project and test directories to Python path
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeDevice
from hetcompute.config import ComputeConfiguration


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line("markers", "performance: Performance tests")

@pytest.fixture(scope="session")
def project_root():
    """Return project root directory"""
    return PROJECT_ROOT

@pytest.fixture
def config():
    return ComputeConfiguration()

@pytest.fixture
def fake_device_factory():
    return FakeDevice

@pytest.fixture
def rng():
    return np.random.default_rng(42)
