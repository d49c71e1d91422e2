"""Core configuration and worker pool."""

from .config import NEAR_ZERO, ConfigValidationError, ProcessingConfig
from .workers import WorkerPool

__all__ = [
    "NEAR_ZERO",
    "ConfigValidationError",
    "ProcessingConfig",
    "WorkerPool",
]
