"""
Iterative radix-2 Cooley-Tukey FFT.

The transform works in place on separate real and imaginary float64 arrays:
a bit-reversal permutation first, then one pass per stage with that stage's
twiddle factors computed once up front rather than inside the butterfly
loop. The inverse transform conjugates the twiddles and scales by ``1/n``.
"""

from typing import Sequence, Tuple, Union

import numpy as np

from ..errors import InvalidTransformLengthError

ArrayLike = Union[np.ndarray, Sequence[float]]


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def _bit_reverse_permute(real: np.ndarray, imag: np.ndarray) -> None:
    n = real.shape[0]
    j = 0
    for i in range(1, n):
        bit = n >> 1
        while j & bit:
            j ^= bit
            bit >>= 1
        j |= bit
        if i < j:
            real[i], real[j] = real[j], real[i]
            imag[i], imag[j] = imag[j], imag[i]


def transform(real: np.ndarray, imag: np.ndarray, inverse: bool = False) -> None:
    """
    In-place FFT of ``real + i*imag``.

    Args:
        real: float64 array of length n (power of two), overwritten
        imag: float64 array of length n, overwritten
        inverse: compute the inverse transform (scaled by 1/n)

    Raises:
        InvalidTransformLengthError: length is not a power of two or the
            arrays differ in length
    """
    n = real.shape[0]
    if imag.shape[0] != n:
        raise InvalidTransformLengthError(f"Real and imaginary parts differ in length: {n} != {imag.shape[0]}")
    if not is_power_of_two(n):
        raise InvalidTransformLengthError(f"FFT length must be a power of two, got {n}")

    _bit_reverse_permute(real, imag)

    sign = 1.0 if inverse else -1.0
    size = 2
    while size <= n:
        half = size // 2
        # Twiddles for this stage
        angles = sign * 2.0 * np.pi * np.arange(half) / size
        w_real = np.cos(angles)
        w_imag = np.sin(angles)

        for start in range(0, n, size):
            top = slice(start, start + half)
            bottom = slice(start + half, start + size)
            t_real = w_real * real[bottom] - w_imag * imag[bottom]
            t_imag = w_real * imag[bottom] + w_imag * real[bottom]
            u_real = real[top].copy()
            u_imag = imag[top].copy()
            real[top] = u_real + t_real
            imag[top] = u_imag + t_imag
            real[bottom] = u_real - t_real
            imag[bottom] = u_imag - t_imag
        size *= 2

    if inverse:
        real /= n
        imag /= n


def forward(signal: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """FFT of a real signal, returned as new (real, imag) arrays"""
    real = np.array(signal, dtype=np.float64, copy=True)
    imag = np.zeros_like(real)
    transform(real, imag, inverse=False)
    return real, imag


def inverse(real: ArrayLike, imag: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse FFT into new (real, imag) arrays"""
    re = np.array(real, dtype=np.float64, copy=True)
    im = np.array(imag, dtype=np.float64, copy=True)
    transform(re, im, inverse=True)
    return re, im
