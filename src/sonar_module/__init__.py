"""
Sonar Module - Spatial processing for multi-channel sonar arrays

Turns complex baseband samples from a linear receive array into
per-range direction of arrival estimates.

Components:
    - TransformEngine: Fixed-size FFTs with packed real layout and
      carrier frequency alignment
    - BlockConvolver: Block-parallel matched filtering against indexed
      signal images
    - BeamformingEngine: Multi-beam steering with sub-aperture
      interferometric angle refinement

Example:
    from sonar_module import BeamformingEngine, create_linear_array, detect_targets

    geometry = create_linear_array(n_channels=32, carrier_frequency=100e3)
    with BeamformingEngine() as engine:
        engine.configure(geometry)
        engine.set_signals([replica] * geometry.n_channels)
        doa = engine.get_doa(channel_data)

    for target in detect_targets(doa, threshold=0.5):
        print(target)
"""

__version__ = "0.1.0"
__author__ = "Sonar Module Team"

from .array import (
    ArrayGeometry,
    BeamformingEngine,
    BeamformingState,
    BeamSet,
    DOATarget,
    InterferometricDOA,
    create_linear_array,
    detect_targets,
)
from .core import ConfigValidationError, ProcessingConfig, WorkerPool
from .dsp import (
    BlockConvolver,
    KernelDomain,
    MissingKernelError,
    TransformDirection,
    TransformEngine,
    TransformKind,
    TransformSizeError,
    allowed_size,
)

__all__ = [
    # Core
    "ConfigValidationError",
    "ProcessingConfig",
    "WorkerPool",
    # DSP
    "BlockConvolver",
    "KernelDomain",
    "MissingKernelError",
    "TransformDirection",
    "TransformEngine",
    "TransformKind",
    "TransformSizeError",
    "allowed_size",
    # Array processing
    "ArrayGeometry",
    "BeamformingEngine",
    "BeamformingState",
    "BeamSet",
    "DOATarget",
    "InterferometricDOA",
    "create_linear_array",
    "detect_targets",
]
