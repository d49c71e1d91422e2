"""
Signal processing primitives.

Provides:
- Fixed-size FFTs over a table of efficient transform lengths
- Block convolution against indexed kernels
"""

from .convolution import (
    BlockConvolver,
    KernelDomain,
    KernelImage,
    MissingKernelError,
    convolution_size,
)
from .fft import (
    FFT_SIZES,
    MAX_FFT_SIZE,
    TransformDirection,
    TransformEngine,
    TransformKind,
    TransformPlan,
    TransformSizeError,
    alloc_buffer,
    allowed_size,
)

__all__ = [
    # FFT
    "FFT_SIZES",
    "MAX_FFT_SIZE",
    "TransformDirection",
    "TransformEngine",
    "TransformKind",
    "TransformPlan",
    "TransformSizeError",
    "alloc_buffer",
    "allowed_size",
    # Convolution
    "BlockConvolver",
    "KernelDomain",
    "KernelImage",
    "MissingKernelError",
    "convolution_size",
]
