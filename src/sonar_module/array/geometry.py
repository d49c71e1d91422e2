"""
Geometry for linear sonar receive arrays.

Defines channel offsets, sub-aperture grouping, acoustic parameters
and the set of beams derived from them.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.config import NEAR_ZERO, ConfigValidationError

logger = logging.getLogger(__name__)

# Speed of sound in sea water in m/s
SOUND_VELOCITY = 1500.0

MAX_CHANNELS = 128
MAX_BEAMS = 1024
MAX_OFFSET = 1.0  # Channel offsets are limited to +-1 meter

# Sub-aperture groups: channels tagged 3 belong to both
GROUP_FIRST = 1
GROUP_SECOND = 2
GROUP_BOTH = 3
VALID_GROUPS = (GROUP_FIRST, GROUP_SECOND, GROUP_BOTH)


@dataclass
class ArrayGeometry:
    """
    Geometry and acoustic parameters of a linear receive array.

    Channel offsets are measured along the array baseline in meters.
    Groups 1 and 3 form the first sub-aperture, groups 2 and 3 the
    second; the distance between their phase centers is the
    interferometric baseline.
    """

    offsets: List[float] = field(default_factory=list)  # Channel offsets in meters
    groups: List[int] = field(default_factory=list)  # Sub-aperture tag per channel
    carrier_frequency: float = 100e3  # Signal carrier in Hz
    sample_rate: float = 80e3  # Complex sample rate in Hz
    heterodyne_frequency: Optional[float] = None  # Reference frequency, defaults to carrier
    sound_velocity: float = SOUND_VELOCITY  # m/s
    field_of_view: float = math.pi / 2  # Full sector width in radians
    invert_polarity: List[bool] = field(default_factory=list)  # Per-channel sign flip

    def __post_init__(self) -> None:
        """Normalize per-channel lists and fill defaults."""
        self.offsets = [float(x) for x in self.offsets]
        self.groups = [int(g) for g in self.groups]
        if not self.invert_polarity:
            self.invert_polarity = [False] * len(self.offsets)
        else:
            self.invert_polarity = [bool(p) for p in self.invert_polarity]
        if self.heterodyne_frequency is None:
            self.heterodyne_frequency = self.carrier_frequency

    @property
    def n_channels(self) -> int:
        """Number of receive channels."""
        return len(self.offsets)

    @property
    def wavelength(self) -> float:
        """Wavelength at the carrier frequency in meters."""
        return self.sound_velocity / self.carrier_frequency

    @property
    def distance_step(self) -> float:
        """Range increment per sample in meters (two-way travel)."""
        return self.sound_velocity / (2.0 * self.sample_rate)

    @property
    def aperture(self) -> float:
        """Span between the outermost channels in meters."""
        if not self.offsets:
            return 0.0
        return max(self.offsets) - min(self.offsets)

    def validate(self) -> None:
        """
        Check all geometry invariants.

        Raises:
            ConfigValidationError: If any parameter is out of range
        """
        n = self.n_channels
        if not (1 <= n <= MAX_CHANNELS):
            raise ConfigValidationError(
                f"number of channels must be between 1 and {MAX_CHANNELS}, got {n}"
            )
        if len(self.groups) != n:
            raise ConfigValidationError(
                f"groups must have one entry per channel ({n}), got {len(self.groups)}"
            )
        if len(self.invert_polarity) != n:
            raise ConfigValidationError(
                f"invert_polarity must have one entry per channel ({n}), "
                f"got {len(self.invert_polarity)}"
            )

        for name in ("carrier_frequency", "sample_rate", "sound_velocity", "field_of_view"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < NEAR_ZERO:
                raise ConfigValidationError(f"{name} must be positive, got {value}")
        if self.field_of_view >= math.pi:
            raise ConfigValidationError(
                f"field_of_view must be less than pi, got {self.field_of_view}"
            )
        if not math.isfinite(self.heterodyne_frequency):
            raise ConfigValidationError(
                f"heterodyne_frequency must be finite, got {self.heterodyne_frequency}"
            )

        for i, offset in enumerate(self.offsets):
            if not (-MAX_OFFSET <= offset <= MAX_OFFSET):
                raise ConfigValidationError(
                    f"channel {i} offset must be within +-{MAX_OFFSET} m, got {offset}"
                )
        for i, group in enumerate(self.groups):
            if group not in VALID_GROUPS:
                raise ConfigValidationError(
                    f"channel {i} group must be one of {VALID_GROUPS}, got {group}"
                )

        if not self.channels_in_group(GROUP_FIRST):
            raise ConfigValidationError("no channels in sub-aperture 1 (groups 1, 3)")
        if not self.channels_in_group(GROUP_SECOND):
            raise ConfigValidationError("no channels in sub-aperture 2 (groups 2, 3)")

    def channels_in_group(self, group: int) -> List[int]:
        """
        Channel indices belonging to a sub-aperture.

        Args:
            group: GROUP_FIRST or GROUP_SECOND

        Returns:
            Indices of channels tagged with group or GROUP_BOTH
        """
        return [i for i, g in enumerate(self.groups) if g == group or g == GROUP_BOTH]

    def phase_centers(self) -> Tuple[float, float]:
        """Mean offset of sub-apertures 1 and 2."""
        centers = []
        for group in (GROUP_FIRST, GROUP_SECOND):
            channels = self.channels_in_group(group)
            if not channels:
                centers.append(0.0)
            else:
                centers.append(sum(self.offsets[i] for i in channels) / len(channels))
        return centers[0], centers[1]

    @property
    def baseline(self) -> float:
        """Distance from phase center 1 to phase center 2 in meters."""
        d1, d2 = self.phase_centers()
        return d2 - d1

    def get_polarity_vector(self) -> np.ndarray:
        """Per-channel sign (+1 or -1) applied to raw samples."""
        return np.where(np.array(self.invert_polarity, dtype=bool), -1.0, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert geometry to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArrayGeometry":
        """Create geometry from dictionary."""
        return cls(
            offsets=list(data.get("offsets", [])),
            groups=list(data.get("groups", [])),
            carrier_frequency=data.get("carrier_frequency", 100e3),
            sample_rate=data.get("sample_rate", 80e3),
            heterodyne_frequency=data.get("heterodyne_frequency"),
            sound_velocity=data.get("sound_velocity", SOUND_VELOCITY),
            field_of_view=data.get("field_of_view", math.pi / 2),
            invert_polarity=list(data.get("invert_polarity", [])),
        )


@dataclass(frozen=True)
class BeamSet:
    """Steering angles and phase refinement coefficients."""

    angles: np.ndarray  # Beam angles in radians, ascending
    sines: np.ndarray  # sin(angles)
    k: np.ndarray  # Phase difference to angle correction coefficients

    @property
    def n_beams(self) -> int:
        """Number of beams."""
        return len(self.angles)

    @property
    def angles_deg(self) -> np.ndarray:
        """Beam angles in degrees."""
        return np.degrees(self.angles)


def compute_num_beams(geometry: ArrayGeometry) -> int:
    """
    Number of beams needed to cover the field of view.

    Eight beams per angular resolution cell (wavelength over aperture),
    clamped to [n_channels, MAX_BEAMS].
    """
    wavelength = geometry.wavelength
    resolution = math.asin(min(1.0, wavelength / (geometry.aperture + wavelength)))
    n_beams = 8 * math.ceil(geometry.field_of_view / resolution)
    return int(min(max(n_beams, geometry.n_channels), MAX_BEAMS))


def compute_beam_set(geometry: ArrayGeometry) -> BeamSet:
    """
    Build the beam set for a validated geometry.

    Angles are spaced linearly across [-fov/2, +fov/2]. The coefficient
    k converts the phase difference between the sub-apertures into an
    angular correction: k = c / (2*pi*f0*baseline*cos(angle)). When the
    sub-aperture phase centers coincide there is no phase difference to
    measure; k is zero and the coarse beam angle is kept.
    """
    n_beams = compute_num_beams(geometry)
    half_fov = geometry.field_of_view / 2.0
    if n_beams > 1:
        angles = np.linspace(-half_fov, half_fov, n_beams)
    else:
        angles = np.zeros(1)

    baseline = geometry.baseline
    if abs(baseline) < NEAR_ZERO:
        k = np.zeros(n_beams)
    else:
        k = geometry.sound_velocity / (
            2.0 * math.pi * geometry.carrier_frequency * baseline * np.cos(angles)
        )

    return BeamSet(angles=angles, sines=np.sin(angles), k=k)


def create_linear_array(
    n_channels: int = 32,
    carrier_frequency: float = 100e3,
    sample_rate: float = 80e3,
    spacing_wavelengths: float = 0.5,
    field_of_view: float = math.pi / 2,
    sound_velocity: float = SOUND_VELOCITY,
    heterodyne_frequency: Optional[float] = None,
) -> ArrayGeometry:
    """
    Create a uniform linear array centered on the origin.

    The first half of the channels forms sub-aperture 1 and the second
    half sub-aperture 2.
    """
    spacing = spacing_wavelengths * sound_velocity / carrier_frequency
    start = -spacing * (n_channels - 1) / 2
    offsets = [start + i * spacing for i in range(n_channels)]
    groups = [GROUP_FIRST if i < n_channels // 2 else GROUP_SECOND for i in range(n_channels)]

    return ArrayGeometry(
        offsets=offsets,
        groups=groups,
        carrier_frequency=carrier_frequency,
        sample_rate=sample_rate,
        heterodyne_frequency=heterodyne_frequency,
        sound_velocity=sound_velocity,
        field_of_view=field_of_view,
    )

