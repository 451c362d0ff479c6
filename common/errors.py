"""
Error taxonomy for the mapping pipeline.

- ConfigurationError: fatal, raised before any stage runs (missing/unreadable
  calibration, pose, image or point-cloud files; count mismatches; bad settings).
- StageError: a stage failed while processing a pass. Fatal in batch mode,
  isolated to the current pass in incremental mode.

Geometric degeneracy (no valid projection, too short a baseline) is never an
exception; the affected point/cell is skipped.
"""

from __future__ import annotations


class MappingError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(MappingError, ValueError):
    """Invalid or unreadable inputs/settings detected at startup."""


class StageError(MappingError, RuntimeError):
    """A pipeline stage failed while processing a pass."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
