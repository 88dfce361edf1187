"""Grid geometry and per-cell sampling backed by pyvips."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Mapping, Sequence

from gridsplit.canvas import PixelSource
from gridsplit.codec import encode_data_url
from gridsplit.errors import GridConfigError
from gridsplit.loader import ImageSource, acquire_image
from gridsplit.schemas import GridLines, GridPiece, SplitConfig, SplitMode, SplitOptions, resolve_config
from gridsplit.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

Loader = Callable[[Any], Awaitable[PixelSource]]
Encoder = Callable[[PixelSource, str, float], str]


@dataclass(frozen=True, slots=True)
class CellRect:
    """Source rectangle of one cell on the working canvas."""

    row: int
    col: int
    left: int
    top: int
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class GridLayout:
    """Working canvas placement on the source plus the cell lattice over it."""

    canvas_left: int
    canvas_top: int
    canvas_width: int
    canvas_height: int
    cell_width: int
    cell_height: int
    rows: int
    cols: int

    def cells(self) -> Iterator[CellRect]:
        """Yield cells row-major: every column of row 0, then row 1, ..."""

        for row in range(self.rows):
            for col in range(self.cols):
                yield CellRect(
                    row=row,
                    col=col,
                    left=col * self.cell_width,
                    top=row * self.cell_height,
                    width=self.cell_width,
                    height=self.cell_height,
                )

    @property
    def dropped_px(self) -> tuple[int, int]:
        """Remainder pixels (right, bottom) that no cell covers."""

        return (
            self.canvas_width - self.cell_width * self.cols,
            self.canvas_height - self.cell_height * self.rows,
        )


def check_grid(config: SplitConfig) -> None:
    """Reject grids the geometry cannot turn into non-empty pieces."""

    if config.rows < 1 or config.cols < 1:
        raise GridConfigError(f"rows and cols must be >= 1 (got rows={config.rows}, cols={config.cols})")
    if not 0.0 <= config.quality <= 1.0:
        raise GridConfigError(f"quality must be within [0, 1] (got {config.quality})")


def plan_layout(width: int, height: int, config: SplitConfig) -> GridLayout:
    """Compute the working canvas and cell size for a ``width`` x ``height`` source.

    Crop mode centres the largest square; odd margins put the extra pixel on
    the right/bottom. Cell sizes are floor divisions, so remainder pixels are
    dropped rather than spread across cells.
    """

    check_grid(config)
    if config.mode is SplitMode.CROP:
        size = min(width, height)
        left, top = (width - size) // 2, (height - size) // 2
        canvas_width = canvas_height = size
    else:
        left = top = 0
        canvas_width, canvas_height = width, height

    cell_width = canvas_width // config.cols
    cell_height = canvas_height // config.rows
    if cell_width == 0 or cell_height == 0:
        raise GridConfigError(
            f"{config.rows}x{config.cols} grid is finer than the "
            f"{canvas_width}x{canvas_height} working canvas"
        )
    return GridLayout(
        canvas_left=left,
        canvas_top=top,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        cell_width=cell_width,
        cell_height=cell_height,
        rows=config.rows,
        cols=config.cols,
    )


def preview_grid_lines(rows: int, cols: int) -> GridLines:
    """Percent offsets of the inner divider lines for a ``rows`` x ``cols`` grid."""

    return GridLines(
        horizontal=tuple(i / rows * 100 for i in range(1, rows)),
        vertical=tuple(i / cols * 100 for i in range(1, cols)),
    )


def validate_pieces(pieces: Sequence[GridPiece], config: SplitConfig) -> None:
    """Ensure pieces cover the grid once each, row-major, with uniform cell size."""

    expected = config.rows * config.cols
    if len(pieces) != expected:
        raise ValueError(f"expected {expected} pieces, got {len(pieces)}")
    if not pieces:
        return
    size = (pieces[0].width, pieces[0].height)
    for index, piece in enumerate(pieces):
        row, col = divmod(index, config.cols)
        if (piece.row, piece.col) != (row, col):
            raise ValueError(f"piece {index} is r{piece.row}c{piece.col}, expected r{row}c{col}")
        if (piece.width, piece.height) != size:
            raise ValueError(f"piece {index} is {piece.width}x{piece.height}, expected {size[0]}x{size[1]}")
        if config.mode is SplitMode.CROP and config.rows == config.cols and piece.width != piece.height:
            raise ValueError(f"piece {index} is not square in crop mode")
        if not piece.encoded_data:
            raise ValueError(f"piece {index} has no encoded data")


class ImageGridSplitter:
    """Split images into a grid of independently encoded pieces."""

    def __init__(
        self,
        options: SplitOptions | Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
        loader: Loader | None = None,
        encoder: Encoder | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.config = resolve_config(options)
        self._loader = loader or self._default_loader
        self._encoder = encoder or encode_data_url

    async def _default_loader(self, source: ImageSource) -> PixelSource:
        return await acquire_image(source, settings=self.settings)

    async def split(self, source: ImageSource) -> list[GridPiece]:
        """Acquire ``source`` and return ``rows * cols`` pieces in row-major order.

        The first acquisition, buffer or encoding failure aborts the call; no
        partial result is returned.
        """

        cfg = self.config
        check_grid(cfg)
        image = await self._loader(source)
        layout = plan_layout(image.width, image.height, cfg)
        LOGGER.debug(
            "Splitting %sx%s source (%s) into %sx%s cells of %sx%s, dropped=%s",
            image.width,
            image.height,
            cfg.mode.value,
            cfg.rows,
            cfg.cols,
            layout.cell_width,
            layout.cell_height,
            layout.dropped_px,
        )

        canvas = await asyncio.to_thread(
            image.copy_region,
            layout.canvas_left,
            layout.canvas_top,
            layout.canvas_width,
            layout.canvas_height,
        )

        cells = list(layout.cells())
        semaphore = asyncio.Semaphore(max(1, self.settings.encode_concurrency))
        pieces: list[GridPiece | None] = [None] * len(cells)

        async def _render(index: int, cell: CellRect) -> None:
            async with semaphore:
                encoded = await asyncio.to_thread(self._sample, canvas, cell)
            pieces[index] = GridPiece(
                encoded_data=encoded,
                row=cell.row,
                col=cell.col,
                width=cell.width,
                height=cell.height,
            )

        tasks = [asyncio.create_task(_render(idx, cell)) for idx, cell in enumerate(cells)]
        try:
            await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            LOGGER.exception("Split aborted after %s of %s cells", sum(p is not None for p in pieces), len(cells))
            raise

        return [piece for piece in pieces if piece is not None]

    def _sample(self, canvas: PixelSource, cell: CellRect) -> str:
        buffer = canvas.copy_region(cell.left, cell.top, cell.width, cell.height)
        return self._encoder(buffer, self.config.output_format, self.config.quality)

    def plan(self, width: int, height: int) -> GridLayout:
        """Geometry this splitter would use for a ``width`` x ``height`` image."""

        return plan_layout(width, height, self.config)

    def get_preview_grid_lines(self) -> GridLines:
        return preview_grid_lines(self.config.rows, self.config.cols)
