"""
Beamforming and direction of arrival estimation for sonar arrays.

Forms a fan of beams across the field of view by frequency-domain
steering (optionally combined with matched filtering against the
transmitted signal), picks the strongest beam at every range sample and
refines its angle by comparing the phases of two sub-apertures.
"""

import copy
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from ..core.config import ConfigValidationError, ProcessingConfig
from ..core.workers import WorkerPool
from ..dsp.convolution import BlockConvolver, KernelDomain, MissingKernelError
from ..dsp.fft import (
    TransformDirection,
    TransformEngine,
    TransformKind,
    TransformSizeError,
    alloc_buffer,
    allowed_size,
)
from .doa import empty_doa
from .geometry import (
    GROUP_FIRST,
    GROUP_SECOND,
    ArrayGeometry,
    BeamSet,
    compute_beam_set,
)

logger = logging.getLogger(__name__)

# Transform size used for steering kernels without a signal image
STEERING_FFT_SIZE = 256


class BeamformingState(Enum):
    """Beamforming engine state."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"  # Pure steering (delay-and-sum)
    SIGNALS_SET = "signals_set"  # Steering combined with matched filtering


@dataclass
class _Setup:
    """Committed configuration of the engine."""

    geometry: ArrayGeometry
    beams: BeamSet
    convolver: BlockConvolver
    group1: List[int]  # Channels of sub-aperture 1
    group2: List[int]  # Channels of sub-aperture 2
    polarity: np.ndarray  # +1/-1 per channel
    output_scale: float  # Convolution scale giving unit gain per channel
    signal_points: int  # Signal image length (0 for pure steering)


class BeamformingEngine:
    """
    Multi-beam DoA estimator for linear sonar arrays.

    For every (channel, beam) pair a frequency-domain kernel combines a
    phase ramp pointing the channel at the beam angle with the conjugate
    spectrum of the transmitted signal. Convolving each channel with its
    kernel and summing over channels forms the beams; the strongest beam
    wins at each range sample and the phase difference between the two
    sub-apertures corrects its angle.

    States:
        UNCONFIGURED -> CONFIGURED (configure) -> SIGNALS_SET (set_signals).
        get_doa() is available once configured. configure() and
        set_signals() either succeed completely or leave the engine as it
        was.

    Thread Safety:
        Not thread-safe. Beams are synthesized in parallel internally.

    Example:
        geometry = create_linear_array(n_channels=32)
        engine = BeamformingEngine()
        engine.configure(geometry)
        engine.set_signals([replica] * 32)
        doa = engine.get_doa(channel_data)
        targets = detect_targets(doa)
    """

    def __init__(self, config: Optional[ProcessingConfig] = None) -> None:
        """
        Initialize beamforming engine.

        Args:
            config: Processing configuration for the worker pool
        """
        self._pool = WorkerPool(config)
        self._fft = TransformEngine()
        self._state = BeamformingState.UNCONFIGURED
        self._setup: Optional[_Setup] = None

        # Per-beam scratch, grown on demand and never shrunk
        self._beam_buf = np.zeros((0, 0), dtype=np.complex64)
        self._group1_buf = np.zeros((0, 0), dtype=np.complex64)
        self._group2_buf = np.zeros((0, 0), dtype=np.complex64)

    @property
    def state(self) -> BeamformingState:
        """Current engine state."""
        return self._state

    @property
    def is_configured(self) -> bool:
        """Whether DoA computation is possible."""
        return self._setup is not None

    @property
    def geometry(self) -> Optional[ArrayGeometry]:
        """Copy of the active array geometry."""
        if self._setup is None:
            return None
        return copy.deepcopy(self._setup.geometry)

    @property
    def beams(self) -> Optional[BeamSet]:
        """Active beam set."""
        return self._setup.beams if self._setup is not None else None

    @property
    def n_channels(self) -> int:
        """Number of receive channels (0 when unconfigured)."""
        return self._setup.geometry.n_channels if self._setup is not None else 0

    @property
    def n_beams(self) -> int:
        """Number of formed beams (0 when unconfigured)."""
        return self._setup.beams.n_beams if self._setup is not None else 0

    @property
    def fft_size(self) -> int:
        """Transform size of the steering kernels."""
        return self._setup.convolver.fft_size if self._setup is not None else 0

    @property
    def distance_step(self) -> float:
        """Range increment per sample in meters."""
        return self._setup.geometry.distance_step if self._setup is not None else 0.0

    def configure(self, geometry: ArrayGeometry) -> bool:
        """
        Set array geometry and build the beam set.

        The new configuration is validated and fully built before it
        replaces the current one; on failure the engine is unchanged.
        Any previously set signal images are dropped.

        Args:
            geometry: Array geometry and acoustic parameters

        Returns:
            True if the configuration was applied
        """
        try:
            geometry.validate()
            geometry = copy.deepcopy(geometry)
            beams = compute_beam_set(geometry)
            setup = self._build_setup(geometry, beams, None, 0)
        except (ConfigValidationError, TransformSizeError) as e:
            logger.warning(f"Beamforming configuration rejected: {e}")
            return False

        self._setup = setup
        self._state = BeamformingState.CONFIGURED

        logger.info(
            f"Beamforming configured: {geometry.n_channels} channels, "
            f"{beams.n_beams} beams, baseline {geometry.baseline:.4f}m"
        )
        return True

    def set_signals(
        self,
        images: Optional[Sequence[np.ndarray]],
        n_points: Optional[int] = None,
    ) -> bool:
        """
        Set transmitted signal images for matched filtering.

        Args:
            images: One complex image per channel (all the same length),
                or None to return to pure steering
            n_points: Number of points per image (defaults to image length)

        Returns:
            True if the images were applied
        """
        setup = self._setup
        if setup is None:
            logger.warning("Cannot set signals: beamforming is not configured")
            return False

        if images is None:
            n_points = 0
        else:
            n_channels = setup.geometry.n_channels
            if len(images) != n_channels:
                logger.warning(f"Expected {n_channels} signal images, got {len(images)}")
                return False
            if n_points is None:
                n_points = len(images[0])
            if n_points < 1 or any(img is None or len(img) < n_points for img in images):
                logger.warning(f"Signal images must all hold {n_points} points")
                return False

        try:
            new_setup = self._build_setup(setup.geometry, setup.beams, images, n_points)
        except (ConfigValidationError, TransformSizeError) as e:
            logger.warning(f"Signal images rejected: {e}")
            return False

        self._setup = new_setup
        if images is None:
            self._state = BeamformingState.CONFIGURED
        else:
            self._state = BeamformingState.SIGNALS_SET
            logger.info(
                f"Signal images set: {n_points} points, fft size {new_setup.convolver.fft_size}"
            )
        return True

    def _build_setup(
        self,
        geometry: ArrayGeometry,
        beams: BeamSet,
        images: Optional[Sequence[np.ndarray]],
        n_points: int,
    ) -> _Setup:
        """Compute and register all steering kernels in a new convolver."""
        if images is None:
            fft_size = STEERING_FFT_SIZE
        else:
            fft_size = allowed_size(2 * n_points)

        wavenumbers = self._wavenumbers(geometry, fft_size)
        convolver = BlockConvolver(pool=self._pool)

        for channel_i in range(geometry.n_channels):
            if images is not None:
                signal_f = self._signal_spectrum(images[channel_i], n_points, fft_size)

            # Phase ramps for all beams of this channel
            phase = geometry.offsets[channel_i] * np.outer(beams.sines, wavenumbers)
            weights = np.exp(-1j * phase)
            if images is not None:
                weights = weights * signal_f

            for beam_i in range(beams.n_beams):
                index = channel_i * beams.n_beams + beam_i
                if not convolver.register_kernel(
                    index, weights[beam_i], fft_size, KernelDomain.FREQUENCY
                ):
                    raise ConfigValidationError(f"failed to register steering kernel {index}")

        # Unit gain per channel: pure steering kernels are unit magnitude,
        # signal spectra carry the 1/fft_size of the forward transform and
        # the correlation peak grows with n_points.
        if images is None:
            output_scale = float(fft_size)
        else:
            output_scale = float(fft_size) * fft_size / n_points

        return _Setup(
            geometry=geometry,
            beams=beams,
            convolver=convolver,
            group1=geometry.channels_in_group(GROUP_FIRST),
            group2=geometry.channels_in_group(GROUP_SECOND),
            polarity=geometry.get_polarity_vector(),
            output_scale=output_scale,
            signal_points=n_points,
        )

    def _signal_spectrum(self, image: np.ndarray, n_points: int, fft_size: int) -> np.ndarray:
        """Conjugate spectrum of a signal image zero padded to fft_size."""
        buffer = alloc_buffer(TransformKind.COMPLEX, fft_size)
        buffer[:n_points] = image[:n_points]
        if not self._fft.transform(
            TransformKind.COMPLEX, TransformDirection.FORWARD, buffer, fft_size
        ):
            raise ConfigValidationError("failed to transform signal image")
        return np.conj(buffer)

    @staticmethod
    def _wavenumbers(geometry: ArrayGeometry, fft_size: int) -> np.ndarray:
        """
        Wavenumber of each transform bin in natural FFT order.

        Baseband bins are mapped to physical frequencies around the
        carrier: f = heterodyne + f_bb, with f_bb folded into the
        sample-rate wide window centered on carrier - heterodyne.
        """
        rate = geometry.sample_rate
        offset = geometry.carrier_frequency - geometry.heterodyne_frequency

        baseband = np.fft.fftfreq(fft_size, d=1.0 / rate)
        baseband = np.mod(baseband - offset + rate / 2, rate) - rate / 2 + offset
        frequency = geometry.heterodyne_frequency + baseband

        return 2.0 * math.pi * frequency / geometry.sound_velocity

    def synthesize_beams(
        self,
        channel_data: Sequence[np.ndarray],
        n_points: Optional[int] = None,
    ) -> Optional[np.ndarray]:
        """
        Form all beams without estimating angles.

        Args:
            channel_data: Complex samples per channel
            n_points: Number of samples per channel (defaults to data length)

        Returns:
            Array of shape (n_beams, n_points), or None on invalid input
        """
        setup = self._setup
        if setup is None:
            logger.warning("Cannot form beams: beamforming is not configured")
            return None

        data = self._prepare_data(setup, channel_data, n_points)
        if data is None:
            return None

        beams, _, _ = self._synthesize(setup, data)
        return beams.copy()

    def get_doa(
        self,
        channel_data: Sequence[np.ndarray],
        n_points: Optional[int] = None,
        out: Optional[np.ndarray] = None,
    ) -> Optional[np.ndarray]:
        """
        Estimate direction of arrival for every range sample.

        Args:
            channel_data: Complex samples per channel, all the same length
            n_points: Number of samples per channel (defaults to data length)
            out: Optional DoA record buffer of at least n_points

        Returns:
            DoA records (angle, distance, amplitude), or None on invalid input
        """
        setup = self._setup
        if setup is None:
            logger.warning("Cannot compute DoA: beamforming is not configured")
            return None

        data = self._prepare_data(setup, channel_data, n_points)
        if data is None:
            return None
        n_points = data.shape[1]

        if out is None:
            out = empty_doa(n_points)
        elif len(out) < n_points:
            logger.warning(f"DoA buffer of {len(out)} records shorter than {n_points}")
            return None

        beams, sum1, sum2 = self._synthesize(setup, data)
        points = np.arange(n_points)

        # Coarse search: strongest beam at each range, lowest index on ties
        magnitude = np.abs(beams)
        winner = np.argmax(magnitude, axis=0)

        # Fine search: phase difference between the sub-apertures
        cross = sum1[winner, points] * np.conj(sum2[winner, points])
        phase = np.arctan2(cross.imag, cross.real)
        correction = np.arcsin(np.clip(phase * setup.beams.k[winner], -1.0, 1.0))

        out["angle"][:n_points] = setup.beams.angles[winner] - correction
        out["distance"][:n_points] = points * setup.geometry.distance_step
        out["amplitude"][:n_points] = magnitude[winner, points]

        return out

    def _prepare_data(
        self,
        setup: _Setup,
        channel_data: Sequence[np.ndarray],
        n_points: Optional[int],
    ) -> Optional[np.ndarray]:
        """Stack channel data and apply channel polarity."""
        n_channels = setup.geometry.n_channels
        if channel_data is None or len(channel_data) != n_channels:
            count = 0 if channel_data is None else len(channel_data)
            logger.warning(f"Expected data for {n_channels} channels, got {count}")
            return None

        if n_points is None:
            n_points = len(channel_data[0])
        if n_points < 1 or any(ch is None or len(ch) < n_points for ch in channel_data):
            logger.warning(f"Channel data must all hold {n_points} points")
            return None

        data = np.empty((n_channels, n_points), dtype=np.complex64)
        for channel_i in range(n_channels):
            data[channel_i] = channel_data[channel_i][:n_points]
        data *= setup.polarity[:, np.newaxis].astype(np.float32)

        return data

    def _synthesize(self, setup: _Setup, data: np.ndarray):
        """
        Convolve every channel with every beam kernel.

        Returns:
            Tuple of (beams, sub-aperture 1 sums, sub-aperture 2 sums), each
            of shape (n_beams, n_points) and backed by internal scratch
        """
        convolver = setup.convolver
        n_channels, n_points = data.shape
        n_beams = setup.beams.n_beams

        # Block spectra do not depend on the beam: transform each channel once
        spectra = np.stack(
            [convolver.forward_blocks(data[ch], n_points).copy() for ch in range(n_channels)]
        )

        self._reserve(n_beams, n_points)
        beams = self._beam_buf[:n_beams, :n_points]
        sum1 = self._group1_buf[:n_beams, :n_points]
        sum2 = self._group2_buf[:n_beams, :n_points]

        group1 = setup.group1
        group2 = setup.group2
        scale = setup.output_scale

        def synthesize_range(start: int, stop: int) -> None:
            for beam_i in range(start, stop):
                indices = [ch * n_beams + beam_i for ch in range(n_channels)]
                steered = convolver.apply_kernels(indices, spectra, n_points, scale)
                beams[beam_i] = steered.sum(axis=0)
                sum1[beam_i] = steered[group1].sum(axis=0)
                sum2[beam_i] = steered[group2].sum(axis=0)

        try:
            self._pool.run(synthesize_range, n_beams)
        except MissingKernelError as e:
            # Kernels are registered for every (channel, beam) at commit time
            raise RuntimeError(f"Steering kernel table is incomplete: {e}") from e

        return beams, sum1, sum2

    def _reserve(self, n_beams: int, n_points: int) -> None:
        """Grow per-beam scratch buffers."""
        rows, cols = self._beam_buf.shape
        if rows >= n_beams and cols >= n_points:
            return
        shape = (max(rows, n_beams), max(cols, n_points))
        self._beam_buf = np.zeros(shape, dtype=np.complex64)
        self._group1_buf = np.zeros(shape, dtype=np.complex64)
        self._group2_buf = np.zeros(shape, dtype=np.complex64)
        logger.debug(f"Beam buffers grown to {shape[0]}x{shape[1]}")

    def close(self) -> None:
        """Release worker threads."""
        self._pool.close()

    def __enter__(self) -> "BeamformingEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
