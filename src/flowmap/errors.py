"""Exception hierarchy for fatal indexing conditions.

File-level and reference-level problems are never raised; they are
collected as warnings on the run summary instead.
"""

from __future__ import annotations


class FlowmapError(Exception):
    """Base class for all fatal flowmap errors."""


class ConfigError(FlowmapError):
    """The configuration file exists but cannot be used."""


class StoreError(FlowmapError):
    """The persisted index cannot be written."""


class LockError(FlowmapError):
    """Another run holds the lock for this project root."""


class IndexerError(FlowmapError):
    """The run cannot start (e.g. the project root does not exist)."""


class RunCancelled(FlowmapError):
    """The run was abandoned before the index was saved."""
