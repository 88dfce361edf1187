"""Pydantic DTOs for split options, resolved config and emitted pieces."""

from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Mapping
from urllib.parse import unquote_to_bytes

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MODE = "crop"
DEFAULT_COLS = 3
DEFAULT_ROWS = 3
DEFAULT_OUTPUT_FORMAT = "image/png"
DEFAULT_QUALITY = 0.8


class SplitMode(str, Enum):
    """Geometric strategy applied before slicing."""

    CROP = "crop"
    STRETCH = "stretch"


class SplitOptions(BaseModel):
    """Partial options supplied by callers; absent fields fall back to defaults."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    mode: SplitMode | None = Field(default=None, description="crop (square cells) or stretch")
    cols: int | None = Field(default=None, description="Number of cells across")
    rows: int | None = Field(default=None, description="Number of cells down")
    output_format: str | None = Field(
        default=None,
        alias="outputFormat",
        description="MIME-like encoder format id, e.g. image/png",
    )
    quality: float | None = Field(default=None, description="Encoder quality in [0, 1]")


class SplitConfig(BaseModel):
    """Fully resolved split configuration, immutable once built."""

    model_config = ConfigDict(frozen=True)

    mode: SplitMode = SplitMode(DEFAULT_MODE)
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS
    output_format: str = DEFAULT_OUTPUT_FORMAT
    quality: float = DEFAULT_QUALITY


def resolve_config(options: SplitOptions | Mapping[str, Any] | None = None, **overrides: Any) -> SplitConfig:
    """Merge partial options with defaults, field by field.

    Values are passed through without range checks; ``cols=0`` or
    ``quality=1.5`` come back unchanged and are policed by the splitter.
    """

    if options is None:
        partial = SplitOptions()
    elif isinstance(options, SplitOptions):
        partial = options
    else:
        partial = SplitOptions.model_validate(dict(options))
    if overrides:
        partial = partial.model_copy(update=SplitOptions.model_validate(overrides).model_dump(exclude_none=True))

    return SplitConfig(
        mode=partial.mode if partial.mode is not None else SplitMode(DEFAULT_MODE),
        cols=partial.cols if partial.cols is not None else DEFAULT_COLS,
        rows=partial.rows if partial.rows is not None else DEFAULT_ROWS,
        output_format=partial.output_format if partial.output_format is not None else DEFAULT_OUTPUT_FORMAT,
        quality=partial.quality if partial.quality is not None else DEFAULT_QUALITY,
    )


class GridPiece(BaseModel):
    """One encoded cell plus its grid coordinates and pixel size."""

    model_config = ConfigDict(frozen=True)

    encoded_data: str = Field(description="Encoded cell, a data: URL for the default encoder")
    row: int = Field(ge=0)
    col: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def media_type(self) -> str | None:
        if not self.encoded_data.startswith("data:"):
            return None
        header = self.encoded_data[5:].split(",", 1)[0]
        return header.split(";", 1)[0] or None

    def to_bytes(self) -> bytes:
        """Decode the ``data:`` URL payload back into encoded image bytes."""

        if not self.encoded_data.startswith("data:") or "," not in self.encoded_data:
            raise ValueError(f"piece r{self.row}c{self.col} does not carry a data: URL")
        header, payload = self.encoded_data[5:].split(",", 1)
        if header.endswith(";base64"):
            return base64.b64decode(payload)
        return unquote_to_bytes(payload)


class GridLines(BaseModel):
    """Percentage offsets of the internal divider lines of a grid."""

    model_config = ConfigDict(frozen=True)

    horizontal: tuple[float, ...] = Field(default_factory=tuple)
    vertical: tuple[float, ...] = Field(default_factory=tuple)
