"""
SIMD hardware detection.

Reads the CPU feature flags and cache sizes of the host and reports the
preferred vector width, which the vectorized engine turns into a float32
lane count.
"""

import logging
import platform
from dataclasses import dataclass
from enum import Enum, auto
from functools import lru_cache
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class SIMDInstructionSet(Enum):
    """Supported SIMD instruction sets"""
    # x86 instruction sets
    SSE2 = auto()
    SSE4_2 = auto()
    AVX = auto()
    AVX2 = auto()
    AVX512F = auto()

    # ARM instruction sets
    NEON = auto()

    # Fallback
    SCALAR = auto()


# Register width in bits
VECTOR_WIDTHS = {
    SIMDInstructionSet.SSE2: 128,
    SIMDInstructionSet.SSE4_2: 128,
    SIMDInstructionSet.AVX: 256,
    SIMDInstructionSet.AVX2: 256,
    SIMDInstructionSet.AVX512F: 512,
    SIMDInstructionSet.NEON: 128,
    SIMDInstructionSet.SCALAR: 64,
}

_PRIORITY = [
    SIMDInstructionSet.AVX512F,
    SIMDInstructionSet.AVX2,
    SIMDInstructionSet.AVX,
    SIMDInstructionSet.SSE4_2,
    SIMDInstructionSet.SSE2,
    SIMDInstructionSet.NEON,
    SIMDInstructionSet.SCALAR,
]


@dataclass(frozen=True)
class SIMDCapabilities:
    """Hardware SIMD capabilities"""
    instruction_sets: frozenset
    cache_sizes: Dict[str, int]  # L1, L2, L3 in bytes
    cpu_features: frozenset

    @property
    def best_instruction_set(self) -> SIMDInstructionSet:
        for instruction_set in _PRIORITY:
            if instruction_set in self.instruction_sets:
                return instruction_set
        return SIMDInstructionSet.SCALAR

    @property
    def has_fma(self) -> bool:
        return 'fma' in self.cpu_features or 'avx2' in self.cpu_features or 'avx512f' in self.cpu_features

    @property
    def vector_width_bits(self) -> int:
        return VECTOR_WIDTHS[self.best_instruction_set]

    def lane_width(self, element_bits: int = 32) -> int:
        """Elements per vector register, at least 1"""
        return max(1, self.vector_width_bits // element_bits)


class HardwareDetector:
    """Hardware capability detection"""

    @staticmethod
    def detect_cpu_features(cpuinfo_path: str = '/proc/cpuinfo') -> Set[str]:
        """Detect CPU features from cpuinfo flags"""
        features = set()

        if platform.system() == 'Linux':
            try:
                with open(cpuinfo_path, 'r') as f:
                    flags = set()
                    for line in f:
                        key, _, value = line.partition(':')
                        if key.strip().lower() in ('flags', 'features'):
                            flags.update(value.lower().split())
                for flag in ('avx512f', 'avx2', 'avx', 'fma', 'sse4_2', 'sse2', 'neon', 'asimd'):
                    if flag in flags:
                        features.add('neon' if flag == 'asimd' else flag)
            except OSError as e:
                logger.debug("Could not read %s: %s", cpuinfo_path, e)

        # Fallback feature detection
        if not features:
            machine = platform.machine().lower()
            if machine in ('x86_64', 'amd64'):
                features.add('sse2')
            elif 'arm' in machine or 'aarch64' in machine:
                features.add('neon')

        return features

    @staticmethod
    def detect_cache_sizes() -> Dict[str, int]:
        """Detect CPU cache sizes"""
        cache_sizes = {
            'L1': 32 * 1024,   # 32KB default
            'L2': 256 * 1024,  # 256KB default
            'L3': 8 * 1024 * 1024  # 8MB default
        }

        if platform.system() == 'Linux':
            # sysfs index0 is L1d, index2 is L2, index3 is L3
            for level, index in (('L1', 0), ('L2', 2), ('L3', 3)):
                cache_path = f'/sys/devices/system/cpu/cpu0/cache/index{index}/size'
                try:
                    with open(cache_path, 'r') as f:
                        size_str = f.read().strip()
                    if size_str.endswith('K'):
                        cache_sizes[level] = int(size_str[:-1]) * 1024
                    elif size_str.endswith('M'):
                        cache_sizes[level] = int(size_str[:-1]) * 1024 * 1024
                except (OSError, ValueError):
                    continue

        return cache_sizes

    @staticmethod
    def create_capabilities() -> SIMDCapabilities:
        """Create capabilities object from hardware detection"""
        features = HardwareDetector.detect_cpu_features()
        instruction_sets = {SIMDInstructionSet.SCALAR}
        for flag, instruction_set in (('sse2', SIMDInstructionSet.SSE2),
                                      ('sse4_2', SIMDInstructionSet.SSE4_2),
                                      ('avx', SIMDInstructionSet.AVX),
                                      ('avx2', SIMDInstructionSet.AVX2),
                                      ('avx512f', SIMDInstructionSet.AVX512F),
                                      ('neon', SIMDInstructionSet.NEON)):
            if flag in features:
                instruction_sets.add(instruction_set)

        return SIMDCapabilities(
            instruction_sets=frozenset(instruction_sets),
            cache_sizes=HardwareDetector.detect_cache_sizes(),
            cpu_features=frozenset(features),
        )


@lru_cache(maxsize=1)
def detect_capabilities() -> SIMDCapabilities:
    """Probe the host once per process"""
    capabilities = HardwareDetector.create_capabilities()
    logger.info("SIMD capabilities: %s (%d-bit, fma=%s)",
                capabilities.best_instruction_set.name,
                capabilities.vector_width_bits, capabilities.has_fma)
    return capabilities


def preferred_lane_width(override: Optional[int] = None) -> int:
    """float32 lanes per vector register"""
    if override is not None:
        return override
    return detect_capabilities().lane_width(32)
