"""
Direction of Arrival (DoA) records and estimators.

Provides the per-range DoA record format shared by the estimators,
a two-channel interferometric estimator and a simple target detector
over DoA records.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..core.config import NEAR_ZERO, ConfigValidationError

logger = logging.getLogger(__name__)

# One record per range sample
DOA_DTYPE = np.dtype(
    [
        ("angle", np.float32),  # Direction of arrival in radians
        ("distance", np.float32),  # Range in meters
        ("amplitude", np.float32),  # Linear amplitude
    ]
)


def empty_doa(n_points: int) -> np.ndarray:
    """Allocate a zeroed array of DoA records."""
    return np.zeros(n_points, dtype=DOA_DTYPE)


@dataclass
class DOATarget:
    """Target detected in a DoA record array."""

    index: int  # Range sample index
    angle: float  # Direction of arrival in radians
    distance: float  # Range in meters
    amplitude: float  # Amplitude relative to the strongest record

    @property
    def angle_deg(self) -> float:
        """Angle in degrees."""
        return math.degrees(self.angle)

    def __repr__(self) -> str:
        return (
            f"DOATarget(index={self.index}, angle={self.angle_deg:.2f}°, "
            f"distance={self.distance:.3f}m, amp={self.amplitude:.2f})"
        )


def detect_targets(doa: np.ndarray, threshold: float = 0.5) -> List[DOATarget]:
    """
    Find targets as local amplitude maxima above a relative threshold.

    Args:
        doa: DoA records
        threshold: Minimum amplitude relative to the strongest record

    Returns:
        Targets ordered by range
    """
    if len(doa) == 0:
        return []

    amplitude = doa["amplitude"].astype(np.float64)
    peak = float(np.max(amplitude))
    if peak <= 0:
        return []
    normalized = amplitude / peak

    targets = []
    n = len(normalized)
    for i in range(n):
        value = normalized[i]
        if value < threshold:
            continue
        if i > 0 and normalized[i - 1] > value:
            continue
        if i < n - 1 and normalized[i + 1] >= value:
            continue
        targets.append(
            DOATarget(
                index=i,
                angle=float(doa["angle"][i]),
                distance=float(doa["distance"][i]),
                amplitude=float(value),
            )
        )

    return targets


class InterferometricDOA:
    """
    Two-channel interferometric direction finder.

    Estimates the angle of every range sample from the phase difference
    between two receivers separated by a known base:

        sin(theta) = phi * lambda / (2 * pi * base)

    Angles are unambiguous within +-max_angle.

    Example:
        doa = InterferometricDOA()
        doa.configure(signal_frequency=100e3, antenna_base=0.01,
                      sample_rate=80e3, sound_velocity=1500.0)
        records = doa.estimate(channel_a, channel_b)
    """

    def __init__(self) -> None:
        """Initialize unconfigured estimator."""
        self._signal_frequency = 0.0
        self._antenna_base = 0.0
        self._sample_rate = 0.0
        self._sound_velocity = 0.0

        self._wavelength = 0.0
        self._distance_step = 0.0
        self._phase_range = 0.0
        self._max_angle = 0.0

    @property
    def is_configured(self) -> bool:
        """Whether configure() has been called."""
        return self._phase_range != 0.0

    @property
    def max_angle(self) -> float:
        """Largest unambiguous angle magnitude in radians."""
        return self._max_angle

    @property
    def distance_step(self) -> float:
        """Range increment per sample in meters."""
        return self._distance_step

    def configure(
        self,
        signal_frequency: float,
        antenna_base: float,
        sample_rate: float,
        sound_velocity: float,
    ) -> None:
        """
        Set processing parameters.

        Args:
            signal_frequency: Carrier frequency in Hz
            antenna_base: Distance between the receivers in meters
            sample_rate: Sample rate in Hz
            sound_velocity: Sound velocity in m/s

        Raises:
            ConfigValidationError: If a parameter is not positive
        """
        for name, value in (
            ("signal_frequency", signal_frequency),
            ("sample_rate", sample_rate),
            ("sound_velocity", sound_velocity),
        ):
            if value < NEAR_ZERO:
                raise ConfigValidationError(f"{name} must be positive, got {value}")
        if abs(antenna_base) < NEAR_ZERO:
            raise ConfigValidationError(f"antenna_base must be non-zero, got {antenna_base}")

        self._signal_frequency = signal_frequency
        self._antenna_base = antenna_base
        self._sample_rate = sample_rate
        self._sound_velocity = sound_velocity

        self._wavelength = sound_velocity / signal_frequency
        self._distance_step = sound_velocity / (2.0 * sample_rate)
        self._phase_range = self._wavelength / (2.0 * math.pi * antenna_base)
        self._max_angle = abs(math.asin(min(1.0, max(-1.0, self._phase_range * math.pi))))

        logger.info(
            f"Interferometer configured: base={antenna_base:.4f}m, "
            f"max angle={math.degrees(self._max_angle):.1f}°"
        )

    def estimate(
        self,
        data1: np.ndarray,
        data2: np.ndarray,
        out: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Compute angle, distance and amplitude for every sample.

        Args:
            data1: Complex samples of the first receiver
            data2: Complex samples of the second receiver
            out: Optional DoA record buffer

        Returns:
            DoA records, one per sample
        """
        if not self.is_configured:
            raise RuntimeError("InterferometricDOA is not configured")

        n_points = min(len(data1), len(data2))
        a = np.asarray(data1[:n_points])
        b = np.asarray(data2[:n_points])

        if out is None:
            out = empty_doa(n_points)

        phase = np.angle(a * np.conj(b))
        out["angle"][:n_points] = np.arcsin(np.clip(phase * self._phase_range, -1.0, 1.0))
        out["distance"][:n_points] = np.arange(n_points) * self._distance_step
        out["amplitude"][:n_points] = np.abs(a) * np.abs(b)

        return out
