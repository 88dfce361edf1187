"""Tests for grid geometry and the sampler, using in-memory fake canvases."""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from gridsplit.errors import ContextUnavailableError, EncodingError, GridConfigError
from gridsplit.schemas import GridPiece, resolve_config
from gridsplit.settings import Settings
from gridsplit.tiler import ImageGridSplitter, plan_layout, preview_grid_lines, validate_pieces


class FakeCanvas:
    """Records every region copy and remembers where it sits on the source."""

    def __init__(self, width: int, height: int, *, origin: tuple[int, int] = (0, 0), log: list | None = None) -> None:
        self.width = width
        self.height = height
        self.origin = origin
        self.log = log if log is not None else []

    def copy_region(self, left: int, top: int, width: int, height: int) -> "FakeCanvas":
        self.log.append((left, top, width, height))
        return FakeCanvas(width, height, origin=(self.origin[0] + left, self.origin[1] + top), log=self.log)


def _fake_encoder(canvas: FakeCanvas, format_id: str, quality: float) -> str:
    x, y = canvas.origin
    return f"{format_id}|{quality}|{x},{y}|{canvas.width}x{canvas.height}"


def _settings(encode_concurrency: int = 4) -> Settings:
    return Settings(
        env_path=".env",
        encode_concurrency=encode_concurrency,
        fetch_timeout_s=5.0,
        max_source_bytes=1_000_000,
        user_agent="gridsplit-test",
        autorotate=True,
        log_level="INFO",
    )


def _splitter(options: dict[str, Any] | None = None, **kwargs: Any) -> ImageGridSplitter:
    kwargs.setdefault("settings", _settings())
    kwargs.setdefault("encoder", _fake_encoder)
    return ImageGridSplitter(options, **kwargs)


def _origins(pieces: list[GridPiece]) -> list[str]:
    return [piece.encoded_data.split("|")[2] for piece in pieces]


@pytest.mark.asyncio
async def test_crop_mode_centres_square_and_slices_it() -> None:
    splitter = _splitter({"mode": "crop", "cols": 2, "rows": 2})

    pieces = await splitter.split(FakeCanvas(100, 50))

    assert [(p.row, p.col) for p in pieces] == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert all((p.width, p.height) == (25, 25) for p in pieces)
    assert _origins(pieces) == ["25,0", "50,0", "25,25", "50,25"]


@pytest.mark.asyncio
async def test_stretch_mode_uses_full_bounding_box() -> None:
    splitter = _splitter({"mode": "stretch", "cols": 4, "rows": 1})

    pieces = await splitter.split(FakeCanvas(100, 50))

    assert len(pieces) == 4
    assert all((p.width, p.height) == (25, 50) for p in pieces)
    assert _origins(pieces) == ["0,0", "25,0", "50,0", "75,0"]


@pytest.mark.asyncio
async def test_working_canvas_is_copied_before_cells() -> None:
    source = FakeCanvas(100, 50)
    splitter = _splitter({"mode": "crop", "cols": 2, "rows": 2})

    await splitter.split(source)

    assert source.log[0] == (25, 0, 50, 50)
    assert sorted(source.log[1:]) == [(0, 0, 25, 25), (0, 25, 25, 25), (25, 0, 25, 25), (25, 25, 25, 25)]


@pytest.mark.asyncio
async def test_remainder_pixels_are_dropped() -> None:
    splitter = _splitter({"mode": "stretch", "cols": 3, "rows": 2})

    pieces = await splitter.split(FakeCanvas(10, 7))

    assert len(pieces) == 6
    assert {(p.width, p.height) for p in pieces} == {(3, 3)}
    assert _origins(pieces)[-1] == "6,3"
    assert splitter.plan(10, 7).dropped_px == (1, 1)


@pytest.mark.asyncio
async def test_single_cell_crop_returns_centre_square() -> None:
    splitter = _splitter({"cols": 1, "rows": 1})

    pieces = await splitter.split(FakeCanvas(30, 40))

    assert len(pieces) == 1
    assert (pieces[0].width, pieces[0].height) == (30, 30)
    assert _origins(pieces) == ["0,5"]
    lines = splitter.get_preview_grid_lines()
    assert lines.horizontal == () and lines.vertical == ()


@pytest.mark.asyncio
async def test_pieces_follow_row_major_order_under_concurrency() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def slow_encoder(canvas: FakeCanvas, format_id: str, quality: float) -> str:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        # later cells finish first
        time.sleep(0.002 * (40 - canvas.origin[0] // 10 - canvas.origin[1] // 10))
        with lock:
            active -= 1
        return _fake_encoder(canvas, format_id, quality)

    splitter = _splitter({"mode": "stretch", "cols": 4, "rows": 3}, encoder=slow_encoder, settings=_settings(3))

    pieces = await splitter.split(FakeCanvas(40, 30))

    for index, piece in enumerate(pieces):
        assert (piece.row, piece.col) == divmod(index, 4)
    assert peak <= 3


@pytest.mark.asyncio
async def test_split_is_repeatable_on_the_same_splitter() -> None:
    splitter = _splitter({"mode": "crop", "cols": 3, "rows": 2})
    source = FakeCanvas(90, 61)

    first = await splitter.split(source)
    second = await splitter.split(source)

    assert [(p.row, p.col, p.width, p.height) for p in first] == [
        (p.row, p.col, p.width, p.height) for p in second
    ]
    assert splitter.config == resolve_config({"mode": "crop", "cols": 3, "rows": 2})


@pytest.mark.asyncio
async def test_format_and_quality_are_passed_to_encoder() -> None:
    splitter = _splitter({"cols": 1, "rows": 1, "output_format": "image/webp", "quality": 0.5})

    pieces = await splitter.split(FakeCanvas(8, 8))

    assert pieces[0].encoded_data.startswith("image/webp|0.5|")


@pytest.mark.asyncio
async def test_encoding_failure_aborts_whole_split() -> None:
    def failing_encoder(canvas: FakeCanvas, format_id: str, quality: float) -> str:
        if canvas.origin == (10, 10):
            raise EncodingError("boom")
        return _fake_encoder(canvas, format_id, quality)

    splitter = _splitter({"mode": "stretch", "cols": 2, "rows": 2}, encoder=failing_encoder)

    with pytest.raises(EncodingError, match="boom"):
        await splitter.split(FakeCanvas(20, 20))


@pytest.mark.asyncio
async def test_cell_buffer_failure_aborts_whole_split() -> None:
    class ExhaustedCanvas(FakeCanvas):
        def copy_region(self, left: int, top: int, width: int, height: int) -> FakeCanvas:
            if (left, top) == (10, 0):
                raise ContextUnavailableError("no memory for cell")
            return FakeCanvas(width, height, origin=(left, top))

    class Source(FakeCanvas):
        def copy_region(self, left: int, top: int, width: int, height: int) -> FakeCanvas:
            return ExhaustedCanvas(width, height)

    splitter = _splitter({"mode": "stretch", "cols": 2, "rows": 2})

    with pytest.raises(ContextUnavailableError, match="no memory"):
        await splitter.split(Source(20, 20))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "options",
    [{"cols": 0}, {"rows": -1}, {"quality": 1.5}, {"quality": -0.1}],
)
async def test_invalid_grid_rejected_before_acquisition(options: dict[str, Any]) -> None:
    calls: list[Any] = []

    async def loader(source: Any) -> FakeCanvas:
        calls.append(source)
        return FakeCanvas(10, 10)

    splitter = _splitter(options, loader=loader)

    with pytest.raises(GridConfigError):
        await splitter.split("ignored")
    assert calls == []


@pytest.mark.asyncio
async def test_grid_finer_than_image_is_rejected() -> None:
    splitter = _splitter({"cols": 3, "rows": 3})

    with pytest.raises(GridConfigError, match="finer"):
        await splitter.split(FakeCanvas(2, 5))


@pytest.mark.asyncio
async def test_injected_loader_receives_raw_source() -> None:
    seen: list[Any] = []

    async def loader(source: Any) -> FakeCanvas:
        seen.append(source)
        return FakeCanvas(60, 60)

    splitter = _splitter({"cols": 3, "rows": 3}, loader=loader)

    pieces = await splitter.split("https://example.com/cat.png")

    assert seen == ["https://example.com/cat.png"]
    assert len(pieces) == 9
    assert {(p.width, p.height) for p in pieces} == {(20, 20)}


def test_plan_layout_odd_margin_goes_right() -> None:
    layout = plan_layout(101, 50, resolve_config(cols=2, rows=2))

    assert (layout.canvas_left, layout.canvas_top) == (25, 0)
    assert (layout.canvas_width, layout.canvas_height) == (50, 50)


def test_plan_layout_crop_cells_follow_min_side() -> None:
    layout = plan_layout(120, 300, resolve_config(cols=4, rows=3))

    assert (layout.canvas_left, layout.canvas_top) == (0, 90)
    assert (layout.cell_width, layout.cell_height) == (30, 40)


def test_preview_grid_lines_three_by_three() -> None:
    lines = _splitter({"rows": 3, "cols": 3}).get_preview_grid_lines()

    assert lines.horizontal == pytest.approx((100 / 3, 200 / 3))
    assert lines.vertical == pytest.approx((100 / 3, 200 / 3))


def test_preview_grid_lines_single_row() -> None:
    lines = preview_grid_lines(1, 4)

    assert lines.horizontal == ()
    assert lines.vertical == pytest.approx((25.0, 50.0, 75.0))


def test_validate_pieces_accepts_split_output() -> None:
    config = resolve_config(cols=2, rows=1)
    pieces = [
        GridPiece(encoded_data="a", row=0, col=0, width=5, height=5),
        GridPiece(encoded_data="b", row=0, col=1, width=5, height=5),
    ]

    validate_pieces(pieces, config)  # should not raise


def test_validate_pieces_flags_order_mismatch() -> None:
    config = resolve_config(cols=2, rows=1)
    pieces = [
        GridPiece(encoded_data="b", row=0, col=1, width=5, height=5),
        GridPiece(encoded_data="a", row=0, col=0, width=5, height=5),
    ]

    with pytest.raises(ValueError, match="expected r0c0"):
        validate_pieces(pieces, config)


def test_validate_pieces_flags_missing_pieces() -> None:
    with pytest.raises(ValueError, match="expected 9 pieces"):
        validate_pieces([], resolve_config())
