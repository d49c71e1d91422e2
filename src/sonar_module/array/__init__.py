"""
Array Processing Module for sonar.

Provides:
- Linear array geometry with two interferometric sub-apertures
- Multi-beam steering and matched filtering (BeamformingEngine)
- Two-channel interferometric direction finding
- DoA record format and target detection

Example:
    from sonar_module.array import BeamformingEngine, create_linear_array

    engine = BeamformingEngine()
    engine.configure(create_linear_array(n_channels=32))
    doa = engine.get_doa(channel_data)
"""

from .beamforming import STEERING_FFT_SIZE, BeamformingEngine, BeamformingState
from .doa import DOA_DTYPE, DOATarget, InterferometricDOA, detect_targets, empty_doa
from .geometry import (
    GROUP_BOTH,
    GROUP_FIRST,
    GROUP_SECOND,
    MAX_BEAMS,
    MAX_CHANNELS,
    MAX_OFFSET,
    SOUND_VELOCITY,
    ArrayGeometry,
    BeamSet,
    compute_beam_set,
    compute_num_beams,
    create_linear_array,
)

__all__ = [
    # Geometry
    "GROUP_BOTH",
    "GROUP_FIRST",
    "GROUP_SECOND",
    "MAX_BEAMS",
    "MAX_CHANNELS",
    "MAX_OFFSET",
    "SOUND_VELOCITY",
    "ArrayGeometry",
    "BeamSet",
    "compute_beam_set",
    "compute_num_beams",
    "create_linear_array",
    # Beamforming
    "STEERING_FFT_SIZE",
    "BeamformingEngine",
    "BeamformingState",
    # DoA
    "DOA_DTYPE",
    "DOATarget",
    "InterferometricDOA",
    "detect_targets",
    "empty_doa",
]
