"""Exception hierarchy raised by the grid splitter."""

from __future__ import annotations


class GridSplitError(Exception):
    """Base class for every failure surfaced by ``split``."""


class AcquisitionError(GridSplitError):
    """Image source could not be fetched or decoded."""


class ContextUnavailableError(GridSplitError):
    """A pixel buffer for the working canvas or a cell could not be created."""


class EncodingError(GridSplitError):
    """Encoder rejected the requested format or failed while saving a cell."""


class GridConfigError(GridSplitError, ValueError):
    """Grid options are outside what the geometry can produce pieces for."""
