"""
Fixed-size FFT engine for real and complex sample buffers.

Provides the transform used by the convolution and beamforming
engines:
- Transform sizes drawn from a table of efficient composite lengths
- In-place and copying transforms with energy normalization
- Packed layout for real transforms
- Frequency alignment of complex spectra around a carrier
"""

import bisect
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

# Efficient transform sizes: 2^a * 3^b * 5^c between 32 and 2^20
FFT_SIZES = (
    32, 64, 96, 128, 160, 192, 256, 288, 320, 384, 480, 512, 576, 640, 768,
    800, 864, 960, 1024, 1152, 1280, 1440, 1536, 1600, 1728, 1920, 2048, 2304,
    2400, 2560, 2592, 2880, 3072, 3200, 3456, 3840, 4000, 4096, 4320, 4608,
    4800, 5120, 5184, 5760, 6144, 6400, 6912, 7200, 7680, 7776, 8000, 8192,
    8640, 9216, 9600, 10240, 10368, 11520, 12000, 12288, 12800, 12960, 13824,
    14400, 15360, 15552, 16000, 16384, 17280, 18432, 19200, 20000, 20480, 20736,
    21600, 23040, 23328, 24000, 24576, 25600, 25920, 27648, 28800, 30720, 31104,
    32000, 32768, 34560, 36000, 36864, 38400, 38880, 40000, 40960, 41472, 43200,
    46080, 46656, 48000, 49152, 51200, 51840, 55296, 57600, 60000, 61440, 62208,
    64000, 64800, 65536, 69120, 69984, 72000, 73728, 76800, 77760, 80000, 81920,
    82944, 86400, 92160, 93312, 96000, 98304, 100000, 102400, 103680, 108000,
    110592, 115200, 116640, 120000, 122880, 124416, 128000, 129600, 131072,
    138240, 139968, 144000, 147456, 153600, 155520, 160000, 163840, 165888,
    172800, 180000, 184320, 186624, 192000, 194400, 196608, 200000, 204800,
    207360, 209952, 216000, 221184, 230400, 233280, 240000, 245760, 248832,
    256000, 259200, 262144, 276480, 279936, 288000, 294912, 300000, 307200,
    311040, 320000, 324000, 327680, 331776, 345600, 349920, 360000, 368640,
    373248, 384000, 388800, 393216, 400000, 409600, 414720, 419904, 432000,
    442368, 460800, 466560, 480000, 491520, 497664, 500000, 512000, 518400,
    524288, 540000, 552960, 559872, 576000, 583200, 589824, 600000, 614400,
    622080, 629856, 640000, 648000, 655360, 663552, 691200, 699840, 720000,
    737280, 746496, 768000, 777600, 786432, 800000, 819200, 829440, 839808,
    864000, 884736, 900000, 921600, 933120, 960000, 972000, 983040, 995328,
    1000000, 1024000, 1036800, 1048576,
)  # fmt: skip

MAX_FFT_SIZE = FFT_SIZES[-1]


class TransformSizeError(ValueError):
    """Raised when a requested length exceeds the supported transform sizes."""

    pass


class TransformKind(Enum):
    """Type of samples being transformed."""

    REAL = "real"
    COMPLEX = "complex"


class TransformDirection(Enum):
    """Transform direction."""

    FORWARD = "forward"
    BACKWARD = "backward"


def allowed_size(requested: int) -> int:
    """
    Round a length up to the nearest efficient transform size.

    Args:
        requested: Number of points to transform

    Returns:
        Smallest size from FFT_SIZES that is >= requested

    Raises:
        TransformSizeError: If requested is negative or above MAX_FFT_SIZE
    """
    if requested < 0 or requested > MAX_FFT_SIZE:
        raise TransformSizeError(
            f"transform size must be between 0 and {MAX_FFT_SIZE}, got {requested}"
        )
    return FFT_SIZES[bisect.bisect_left(FFT_SIZES, requested)]


def alloc_buffer(kind: TransformKind, n_points: int) -> np.ndarray:
    """
    Allocate a zeroed buffer large enough for an in-place transform.

    Args:
        kind: Sample type (float32 for REAL, complex64 for COMPLEX)
        n_points: Number of significant input points

    Returns:
        Zeroed array of allowed_size(n_points) elements
    """
    size = allowed_size(n_points)
    dtype = np.float32 if kind == TransformKind.REAL else np.complex64
    return np.zeros(size, dtype=dtype)


@dataclass
class TransformPlan:
    """
    Transform setup for one sample kind and transform size.

    Transforms run along the last axis and are unnormalized in both
    directions; scaling is the caller's concern. Real transforms use a
    packed layout of size/2 complex bins where bin 0 holds the DC value
    in its real part and the Nyquist value in its imaginary part.
    """

    kind: TransformKind
    size: int
    work: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Allocate scratch buffer for this plan."""
        if self.kind == TransformKind.REAL:
            self.work = np.zeros(self.size, dtype=np.float64)
        else:
            self.work = np.zeros(self.size, dtype=np.complex128)

    def execute(self, data: np.ndarray, direction: TransformDirection) -> np.ndarray:
        """
        Transform ``data`` (last axis of length ``size``).

        Returns:
            New array with the unnormalized transform
        """
        if self.kind == TransformKind.COMPLEX:
            if direction == TransformDirection.FORWARD:
                return np.fft.fft(data, n=self.size, axis=-1)
            return np.fft.ifft(data, n=self.size, axis=-1, norm="forward")

        if direction == TransformDirection.FORWARD:
            return self._pack(np.fft.rfft(data, n=self.size, axis=-1))
        return np.fft.irfft(self._unpack(data), n=self.size, axis=-1, norm="forward")

    def _pack(self, spectrum: np.ndarray) -> np.ndarray:
        """Pack size/2+1 real-input bins into size floats."""
        half = self.size // 2
        packed = np.empty(spectrum.shape[:-1] + (self.size,), dtype=np.float64)
        packed[..., 0] = spectrum[..., 0].real
        packed[..., 1] = spectrum[..., half].real
        packed[..., 2::2] = spectrum[..., 1:half].real
        packed[..., 3::2] = spectrum[..., 1:half].imag
        return packed

    def _unpack(self, packed: np.ndarray) -> np.ndarray:
        """Expand packed floats to size/2+1 complex bins."""
        half = self.size // 2
        spectrum = np.zeros(packed.shape[:-1] + (half + 1,), dtype=np.complex128)
        spectrum[..., 0] = packed[..., 0]
        spectrum[..., half] = packed[..., 1]
        spectrum[..., 1:half] = packed[..., 2::2] + 1j * packed[..., 3::2]
        return spectrum


class TransformEngine:
    """
    FFT engine with plan reuse and frequency alignment.

    Keeps one plan for the last used sample kind and transform size and
    rebuilds it only when either changes, so repeated calls of the same
    shape reuse scratch buffers.

    Scaling:
        Forward results are divided by n_points (the caller's nominal
        length, not the padded transform size). Backward results are the
        unnormalized inverse multiplied by n_points / size, so a forward
        transform followed by a backward one reproduces the input.

    Thread Safety:
        Not thread-safe; scratch buffers are reused across calls.

    Example:
        engine = TransformEngine()
        buf = alloc_buffer(TransformKind.COMPLEX, 1000)
        buf[:1000] = samples
        engine.transform(TransformKind.COMPLEX, TransformDirection.FORWARD, buf, 1000)
    """

    def __init__(self) -> None:
        """Initialize transform engine."""
        self._plan: Optional[TransformPlan] = None
        self._plan_rebuilds = 0

        # Frequency alignment
        self._alignment = False
        self._carrier_freq = 0.0
        self._reference_freq = 0.0
        self._sample_rate = 1.0

    @property
    def fft_size(self) -> int:
        """Size of the current plan (0 before the first transform)."""
        return self._plan.size if self._plan is not None else 0

    @property
    def plan_rebuilds(self) -> int:
        """Number of times the plan has been rebuilt."""
        return self._plan_rebuilds

    @property
    def alignment_enabled(self) -> bool:
        """Whether frequency alignment is applied to complex spectra."""
        return self._alignment

    def set_frequency_alignment(
        self,
        enabled: bool,
        carrier_freq: float = 0.0,
        reference_freq: float = 0.0,
        sample_rate: float = 1.0,
    ) -> None:
        """
        Enable or disable frequency alignment of complex spectra.

        When enabled, forward complex transforms are rotated so that bin 0
        corresponds to carrier_freq - sample_rate/2 and frequency rises
        by sample_rate/size per bin.

        Args:
            enabled: Apply alignment to complex forward transforms
            carrier_freq: Carrier frequency of the signal in Hz
            reference_freq: Heterodyne (reference) frequency in Hz
            sample_rate: Sample rate in Hz
        """
        self._alignment = enabled
        self._carrier_freq = carrier_freq
        self._reference_freq = reference_freq
        self._sample_rate = sample_rate

    def frequency_axis(self, n_points: int) -> np.ndarray:
        """
        Frequency of each bin of an aligned complex spectrum.

        Args:
            n_points: Number of points passed to the transform

        Returns:
            Array of allowed_size(n_points) frequencies in Hz
        """
        size = allowed_size(n_points)
        df = self._sample_rate / size
        return self._carrier_freq - self._sample_rate / 2 + np.arange(size) * df

    def transform(
        self,
        kind: TransformKind,
        direction: TransformDirection,
        buffer: Optional[np.ndarray],
        n_points: int,
    ) -> bool:
        """
        Transform a buffer in place.

        The first n_points elements of the buffer are the input; the rest
        of the transform is zero padded. The buffer must hold at least
        allowed_size(n_points) elements (see alloc_buffer).

        Args:
            kind: Sample kind (REAL buffers are float, COMPLEX are complex)
            direction: Transform direction
            buffer: Sample buffer, overwritten with the result
            n_points: Number of significant input points

        Returns:
            True on success, False if the buffer or size is invalid
        """
        if buffer is None:
            return False

        try:
            size = allowed_size(n_points)
        except TransformSizeError as e:
            logger.warning(f"Incorrect transform size: {e}")
            return False
        if len(buffer) < size:
            logger.warning(f"Buffer of {len(buffer)} samples shorter than transform {size}")
            return False

        result = self._compute(kind, direction, buffer, n_points)
        if result is None:
            return False

        buffer[: result.shape[-1]] = result
        return True

    def transform_copy(
        self,
        kind: TransformKind,
        direction: TransformDirection,
        data: Optional[np.ndarray],
        n_points: int,
    ) -> Optional[np.ndarray]:
        """
        Transform without modifying the input.

        Args:
            kind: Sample kind
            direction: Transform direction
            data: Input samples (at least n_points long)
            n_points: Number of significant input points

        Returns:
            New array of allowed_size(n_points) elements, or None on error
        """
        if data is None:
            return None

        result = self._compute(kind, direction, data, n_points)
        if result is None:
            return None

        dtype = np.float32 if kind == TransformKind.REAL else np.complex64
        return result.astype(dtype)

    def _compute(
        self,
        kind: TransformKind,
        direction: TransformDirection,
        data: np.ndarray,
        n_points: int,
    ) -> Optional[np.ndarray]:
        """Run the scaled transform and return the result, or None on error."""
        if n_points < 1:
            logger.warning(f"Transform of {n_points} points requested")
            return None

        is_complex = np.iscomplexobj(data)
        if (kind == TransformKind.COMPLEX) != is_complex:
            logger.warning(f"Buffer dtype {data.dtype} does not match {kind.value} transform")
            return None

        if not self._prepare(kind, n_points):
            return None

        plan = self._plan
        size = plan.size
        if direction == TransformDirection.FORWARD:
            if len(data) < n_points:
                logger.warning(f"Buffer of {len(data)} samples shorter than {n_points}")
                return None
            plan.work[:n_points] = data[:n_points]
            plan.work[n_points:] = 0
        else:
            if len(data) < size:
                logger.warning(f"Buffer of {len(data)} samples shorter than transform {size}")
                return None
            plan.work[:] = data[:size]

        result = plan.execute(plan.work, direction)

        if (
            self._alignment
            and kind == TransformKind.COMPLEX
            and direction == TransformDirection.FORWARD
        ):
            result = self._align(result)

        if direction == TransformDirection.FORWARD:
            result /= n_points
        else:
            result *= n_points / size

        return result

    def _prepare(self, kind: TransformKind, n_points: int) -> bool:
        """Rebuild the plan if the kind or transform size changed."""
        try:
            size = allowed_size(n_points)
        except TransformSizeError as e:
            logger.warning(f"Incorrect transform size: {e}")
            return False

        if self._plan is None or self._plan.kind != kind or self._plan.size != size:
            self._plan = TransformPlan(kind=kind, size=size)
            self._plan_rebuilds += 1
            logger.debug(f"Rebuilt {kind.value} transform plan of size {size}")

        return True

    def _align(self, spectrum: np.ndarray) -> np.ndarray:
        """Rotate a spectrum so bin 0 is carrier - sample_rate/2."""
        size = len(spectrum)
        carrier = self._carrier_freq
        rate = self._sample_rate
        half_rate = rate / 2
        df = rate / size

        reference = self._reference_freq
        if reference < carrier - half_rate:
            reference = carrier - half_rate
        elif reference > carrier + half_rate - df:
            reference = carrier + half_rate - df

        offset = math.fmod(carrier - reference, rate)
        index0 = size // 2 - int(size * offset / rate)

        return np.roll(spectrum, index0)
