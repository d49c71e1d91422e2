"""
Configuration management for the sonar array module.

Handles processing settings shared by the transform, convolution
and beamforming engines.
"""

import logging
import multiprocessing
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Values below this are treated as zero by configuration checks
NEAR_ZERO = 1e-5


class ConfigValidationError(ValueError):
    """Raised when configuration values are invalid."""

    pass


@dataclass
class ProcessingConfig:
    """Configuration for numeric processing."""

    max_workers: Optional[int] = None  # None = one worker per CPU core
    min_parallel_items: int = 4  # Jobs smaller than this run inline

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate all configuration fields."""
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigValidationError(
                f"max_workers must be at least 1, got {self.max_workers}"
            )
        if self.min_parallel_items < 1:
            raise ConfigValidationError(
                f"min_parallel_items must be at least 1, got {self.min_parallel_items}"
            )

    @property
    def worker_count(self) -> int:
        """Number of worker threads to use."""
        if self.max_workers is not None:
            return self.max_workers
        return max(1, multiprocessing.cpu_count())

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingConfig":
        """Create configuration from dictionary."""
        return cls(
            max_workers=data.get("max_workers"),
            min_parallel_items=data.get("min_parallel_items", 4),
        )
