"""Split raster images into grids of independently encoded pieces."""

from gridsplit.canvas import PixelSource, VipsCanvas
from gridsplit.codec import encode_bytes, encode_data_url, file_extension
from gridsplit.errors import (
    AcquisitionError,
    ContextUnavailableError,
    EncodingError,
    GridConfigError,
    GridSplitError,
)
from gridsplit.loader import acquire_image
from gridsplit.schemas import GridLines, GridPiece, SplitConfig, SplitMode, SplitOptions, resolve_config
from gridsplit.tiler import (
    CellRect,
    GridLayout,
    ImageGridSplitter,
    plan_layout,
    preview_grid_lines,
    validate_pieces,
)

__all__ = [
    "AcquisitionError",
    "CellRect",
    "ContextUnavailableError",
    "EncodingError",
    "GridConfigError",
    "GridLayout",
    "GridLines",
    "GridPiece",
    "GridSplitError",
    "ImageGridSplitter",
    "PixelSource",
    "SplitConfig",
    "SplitMode",
    "SplitOptions",
    "VipsCanvas",
    "acquire_image",
    "encode_bytes",
    "encode_data_url",
    "file_extension",
    "plan_layout",
    "preview_grid_lines",
    "resolve_config",
    "validate_pieces",
]
