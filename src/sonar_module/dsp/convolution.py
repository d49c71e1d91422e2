"""
FFT block convolution against indexed signal images.

Implements overlap-add style matched filtering of long complex
sequences:
- Kernels registered by integer index, in the time or frequency domain
- One shared transform size per convolver, fixed by kernel 0
- Block-parallel forward and inverse transforms
- Scratch buffers that only grow
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..core.config import ProcessingConfig
from ..core.workers import WorkerPool
from .fft import (
    FFT_SIZES,
    TransformDirection,
    TransformKind,
    TransformPlan,
    TransformSizeError,
    allowed_size,
)

logger = logging.getLogger(__name__)


class MissingKernelError(LookupError):
    """Raised when a convolution refers to an unregistered kernel index."""

    pass


class KernelDomain(Enum):
    """Domain in which a kernel image is supplied."""

    TIME = "time"
    FREQUENCY = "frequency"


@dataclass
class KernelImage:
    """Registered kernel ready for spectral multiplication."""

    spectrum: np.ndarray  # Complex spectrum in natural FFT bin order
    n_points: int  # Number of points supplied at registration
    domain: KernelDomain

    @property
    def fft_size(self) -> int:
        """Transform size of the spectrum."""
        return len(self.spectrum)


def convolution_size(n_points: int) -> int:
    """
    Transform size used for a time-domain kernel of n_points.

    Raises:
        TransformSizeError: If 2 * n_points exceeds the supported sizes
    """
    return allowed_size(2 * n_points)


class BlockConvolver:
    """
    Block convolution engine with indexed kernels.

    The input is cut into blocks of fft_size samples stepped by
    fft_size/2. Each block is transformed, multiplied by the kernel
    spectrum and transformed back; the first half of every block is the
    alias-free part and is written to the output. Blocks are independent
    and are processed in parallel.

    Kernel invariant:
        All kernels share one transform size. Registering index 0 sets
        that size and clears every other index.

    Thread Safety:
        Not thread-safe. apply_kernel()/apply_kernels() only read shared
        state and may be called concurrently on disjoint outputs.

    Example:
        conv = BlockConvolver()
        conv.register_kernel(0, replica, len(replica))
        conv.convolve(0, data, len(data))  # data is now matched-filtered
    """

    def __init__(
        self,
        config: Optional[ProcessingConfig] = None,
        pool: Optional[WorkerPool] = None,
    ) -> None:
        """
        Initialize block convolver.

        Args:
            config: Processing configuration for the worker pool
            pool: Shared worker pool (created from config if omitted)
        """
        self._owns_pool = pool is None
        self._pool = pool or WorkerPool(config)

        self._kernels: Dict[int, KernelImage] = {}
        self._plan: Optional[TransformPlan] = None

        # Scratch buffers, grown on demand and never shrunk
        self._ibuff = np.zeros(0, dtype=np.complex64)
        self._obuff = np.zeros(0, dtype=np.complex128)

    @property
    def fft_size(self) -> int:
        """Shared transform size (0 when no kernel 0 is registered)."""
        return self._plan.size if self._plan is not None else 0

    @property
    def kernels(self) -> Mapping[int, KernelImage]:
        """Registered kernels by index (read-only view)."""
        return dict(self._kernels)

    @property
    def capacity(self) -> int:
        """Number of samples the scratch buffers can hold."""
        return len(self._ibuff)

    def has_kernel(self, index: int) -> bool:
        """Check whether a kernel is registered at index."""
        return index in self._kernels

    def clear(self) -> None:
        """Remove all kernels."""
        self._kernels.clear()
        self._plan = None

    def register_kernel(
        self,
        index: int,
        image: Optional[np.ndarray],
        n_points: int = 0,
        domain: KernelDomain = KernelDomain.TIME,
    ) -> bool:
        """
        Register a kernel image at an index.

        Time-domain images are zero padded, transformed, conjugated and
        stored. Frequency-domain images are stored as supplied and must
        match the shared transform size.

        Args:
            index: Kernel index (0 establishes the transform size)
            image: Complex image, or None to clear the index
            n_points: Number of points in the image
            domain: Domain of the supplied image

        Returns:
            True if the kernel was registered (or cleared)
        """
        if index < 0:
            logger.warning(f"Negative kernel index {index}")
            return False

        if image is None:
            if index == 0:
                self.clear()
            else:
                self._kernels.pop(index, None)
            return True

        if n_points < 1 or len(image) < n_points:
            logger.warning(
                f"Kernel {index}: image of {len(image)} points, {n_points} requested"
            )
            return False

        try:
            size = self._kernel_size(index, n_points, domain)
        except TransformSizeError as e:
            logger.warning(f"Kernel {index}: {e}")
            return False
        if size == 0:
            return False

        plan = self._plan if index != 0 else TransformPlan(TransformKind.COMPLEX, size)
        if domain == KernelDomain.TIME:
            spectrum = np.conj(
                plan.execute(np.asarray(image[:n_points]), TransformDirection.FORWARD)
            )
        else:
            spectrum = np.asarray(image[:n_points])

        kernel = KernelImage(
            spectrum=spectrum.astype(np.complex64),
            n_points=n_points,
            domain=domain,
        )

        if index == 0:
            if self._kernels:
                logger.debug(f"Kernel 0 replaced, clearing {len(self._kernels)} kernels")
            self._kernels.clear()
            self._plan = plan

        self._kernels[index] = kernel
        return True

    def _kernel_size(self, index: int, n_points: int, domain: KernelDomain) -> int:
        """Transform size for a new kernel, or 0 if it cannot be registered."""
        if index != 0 and self._plan is None:
            logger.warning(f"Kernel {index}: kernel 0 must be registered first")
            return 0

        if domain == KernelDomain.TIME:
            if index == 0:
                return convolution_size(n_points)
            if 2 * n_points > self._plan.size:
                logger.warning(
                    f"Kernel {index}: {n_points} points do not fit transform "
                    f"size {self._plan.size}"
                )
                return 0
            return self._plan.size

        if index == 0:
            if n_points not in FFT_SIZES:
                logger.warning(f"Kernel 0: {n_points} is not a supported transform size")
                return 0
            return n_points
        if n_points != self._plan.size:
            logger.warning(
                f"Kernel {index}: frequency image of {n_points} points, "
                f"transform size is {self._plan.size}"
            )
            return 0
        return n_points

    def num_blocks(self, n_points: int) -> int:
        """Number of transform blocks needed for n_points of input."""
        half = self.fft_size // 2
        if half == 0:
            return 0
        return -(-n_points // half)

    def forward_blocks(self, data: np.ndarray, n_points: int) -> Optional[np.ndarray]:
        """
        Cut input into overlapping blocks and transform them.

        Args:
            data: Complex input samples
            n_points: Number of samples to use

        Returns:
            Array of shape (num_blocks, fft_size) with block spectra, backed
            by internal scratch memory and valid until the next call; None
            if no kernel 0 is registered.
        """
        plan = self._plan
        if plan is None:
            return None

        size = plan.size
        half = size // 2
        n_fft = self.num_blocks(n_points)
        if n_fft == 0:
            return np.zeros((0, size), dtype=np.complex128)

        self._reserve(n_fft, size)

        padded = (n_fft + 1) * half
        ibuff = self._ibuff
        ibuff[:n_points] = data[:n_points]
        ibuff[n_points:padded] = 0

        blocks = sliding_window_view(ibuff[:padded], size)[::half]
        spectra = self._obuff[: n_fft * size].reshape(n_fft, size)

        def transform_range(start: int, stop: int) -> None:
            spectra[start:stop] = plan.execute(blocks[start:stop], TransformDirection.FORWARD)

        self._pool.run(transform_range, n_fft)
        return spectra

    def apply_kernel(
        self,
        index: int,
        spectra: np.ndarray,
        n_points: int,
        scale: float = 1.0,
        out: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Multiply block spectra by one kernel and return to the time domain.

        Args:
            index: Kernel index
            spectra: Block spectra from forward_blocks()
            n_points: Number of output samples
            scale: Output scale factor
            out: Optional complex output buffer of at least n_points

        Returns:
            Convolved samples (``out`` if given)

        Raises:
            MissingKernelError: If no kernel is registered at index
        """
        kernel = self._get_kernel(index)
        result = self._inverse(spectra * kernel.spectrum, n_points)
        result *= scale / kernel.n_points

        if out is None:
            return result.astype(np.complex64)
        out[:n_points] = result
        return out

    def apply_kernels(
        self,
        indices: Sequence[int],
        spectra: np.ndarray,
        n_points: int,
        scale: float = 1.0,
    ) -> np.ndarray:
        """
        Apply several kernels to a stack of block spectra at once.

        Args:
            indices: Kernel index for each stacked input
            spectra: Array of shape (len(indices), num_blocks, fft_size)
            n_points: Number of output samples per input
            scale: Output scale factor

        Returns:
            Array of shape (len(indices), n_points)

        Raises:
            MissingKernelError: If any index is not registered
        """
        kernels = [self._get_kernel(i) for i in indices]
        images = np.stack([k.spectrum for k in kernels])[:, np.newaxis, :]
        norms = np.array([scale / k.n_points for k in kernels])[:, np.newaxis]
        return self._inverse(spectra * images, n_points) * norms

    def convolve(
        self,
        index: int,
        data: np.ndarray,
        n_points: int,
        scale: float = 1.0,
    ) -> bool:
        """
        Convolve data with a registered kernel in place.

        Args:
            index: Kernel index
            data: Complex samples, overwritten with the result
            n_points: Number of samples to process
            scale: Output scale factor

        Returns:
            True on success, False if the kernel is missing or input invalid
        """
        if index not in self._kernels:
            logger.warning(f"No kernel registered at index {index}")
            return False
        if data is None or len(data) < n_points:
            logger.warning(f"Invalid convolution input for {n_points} points")
            return False

        spectra = self.forward_blocks(data, n_points)
        if spectra is None:
            return False

        kernel = self._kernels[index]
        size = self.fft_size
        half = size // 2
        norm = scale / kernel.n_points

        def convolve_range(start: int, stop: int) -> None:
            blocks = np.fft.ifft(spectra[start:stop] * kernel.spectrum, axis=-1)
            first = start * half
            last = min(stop * half, n_points)
            data[first:last] = (blocks[:, :half].reshape(-1) * norm)[: last - first]

        self._pool.run(convolve_range, len(spectra))
        return True

    def _get_kernel(self, index: int) -> KernelImage:
        """Look up a kernel by index."""
        try:
            return self._kernels[index]
        except KeyError:
            raise MissingKernelError(f"No kernel registered at index {index}") from None

    def _inverse(self, products: np.ndarray, n_points: int) -> np.ndarray:
        """Inverse transform block products and stitch the first halves."""
        half = products.shape[-1] // 2
        blocks = np.fft.ifft(products, axis=-1)[..., :half]
        stitched = blocks.reshape(blocks.shape[:-2] + (-1,))
        return stitched[..., :n_points]

    def _reserve(self, n_fft: int, size: int) -> None:
        """Grow scratch buffers to hold n_fft blocks."""
        needed = n_fft * size
        if needed <= len(self._ibuff):
            return
        self._ibuff = np.zeros(needed, dtype=np.complex64)
        self._obuff = np.zeros(needed, dtype=np.complex128)
        logger.debug(f"Convolution buffers grown to {needed} samples")

    def close(self) -> None:
        """Release worker threads owned by this convolver."""
        if self._owns_pool:
            self._pool.close()

    def __enter__(self) -> "BlockConvolver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
