"""
Error hierarchy for the heterogeneous compute engine.

Input-validity errors (dimension mismatch, singular matrix, bad FFT length)
reach the caller. Accelerator errors are absorbed by the GPU engines and
only ever surface if the CPU fallback also fails.
"""


class ComputeError(Exception):
    """Base class for every error raised by hetcompute"""


class DimensionMismatchError(ComputeError, ValueError):
    """Operand shapes are incompatible"""

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class SingularMatrixError(ComputeError, ArithmeticError):
    """Pivot magnitude fell below the singularity threshold"""

    def __init__(self, message: str, column: int = -1):
        super().__init__(message)
        self.column = column


class InvalidTransformLengthError(ComputeError, ValueError):
    """FFT input length is not a power of two"""


class DeviceUnavailableError(ComputeError):
    """An accelerator could not be initialized or used"""


class UnsupportedOperationError(ComputeError):
    """Unknown elementwise operation or task operation tag"""


class WorkerRegistrationError(ComputeError, ValueError):
    """Duplicate worker id or invalid registration argument"""
