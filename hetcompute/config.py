"""
Configuration for compute engines and workers.

Values are plain dataclass fields; external loaders hand us either a mapping
(``from_mapping``) or environment variables (``from_env``).
"""

import logging
import os
from dataclasses import dataclass, fields, asdict
from typing import Any, Dict, Mapping, Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


@dataclass
class ComputeConfiguration:
    """Tunables shared by every engine"""
    use_thread_per_task: bool = False  # partition substrate, fixed at engine construction
    device_id: int = 0
    enable_profiling: bool = False
    large_task_threshold: int = 10000  # elements before GPU routing is considered
    dot_product_split_threshold: int = 1000
    matrix_split_threshold: int = 100  # rows
    blocking_threshold: int = 4096  # rows * cols before cache blocking kicks in
    block_size: int = 64
    preferred_lane_width: Optional[int] = None
    fan_out_timeout: Optional[float] = None  # seconds, None waits indefinitely
    shutdown_timeout: float = 5.0

    def __post_init__(self):
        if self.device_id < 0:
            raise ValueError("device_id must be >= 0")
        for name in ('large_task_threshold', 'dot_product_split_threshold',
                     'matrix_split_threshold', 'blocking_threshold', 'block_size'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.preferred_lane_width is not None and self.preferred_lane_width <= 0:
            raise ValueError("preferred_lane_width must be > 0")
        if self.fan_out_timeout is not None and self.fan_out_timeout <= 0:
            raise ValueError("fan_out_timeout must be > 0")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'ComputeConfiguration':
        """Build from the dictionary an external configuration loader produces"""
        known = {f.name: f for f in fields(cls)}
        unknown = set(values) - set(known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs = {}
        for key, raw in values.items():
            kwargs[key] = _coerce(raw, known[key].type, key)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, prefix: str = "HETCOMPUTE_",
                 environ: Optional[Mapping[str, str]] = None) -> 'ComputeConfiguration':
        """Build from ``HETCOMPUTE_<FIELD>`` environment variables"""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            env_key = prefix + f.name.upper()
            if env_key in environ:
                values[f.name] = environ[env_key]
        return cls.from_mapping(values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(raw: Any, annotation: Any, key: str) -> Any:
    """Coerce a raw (often string) value to the dataclass field type"""
    optional = annotation in (Optional[int], Optional[float])
    if optional:
        if raw is None or (isinstance(raw, str) and raw.strip() == ''):
            return None
        annotation = int if annotation == Optional[int] else float

    if annotation is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Invalid boolean for {key}: {raw!r}")

    try:
        if annotation is int:
            if isinstance(raw, bool):
                raise ValueError
            return int(raw)
        if annotation is float:
            return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {key}: {raw!r}") from None
    return raw


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install a basic handler for scripts and the test runner"""
    logging.basicConfig(level=level, format=LOG_FORMAT)
