"""Command-line front end: slice an image into a grid of pieces on disk."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gridsplit import (
    GridLayout,
    GridPiece,
    GridSplitError,
    ImageGridSplitter,
    SplitConfig,
    SplitMode,
    file_extension,
    plan_layout,
    preview_grid_lines,
)
from gridsplit.loader import acquire_image
from gridsplit.settings import Settings, get_settings

console = Console()
cli = typer.Typer(help="Split images into N x M grids of encoded pieces.")


def _resolve_settings() -> Settings:
    return get_settings()


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else settings.log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _piece_filename(piece: GridPiece, extension: str) -> str:
    return f"r{piece.row:03d}_c{piece.col:03d}.{extension}"


def _write_pieces(pieces: list[GridPiece], config: SplitConfig, out_dir: Path, source: str) -> dict[str, Any]:
    out_dir.mkdir(parents=True, exist_ok=True)
    extension = file_extension(config.output_format)
    entries = []
    for piece in pieces:
        filename = _piece_filename(piece, extension)
        (out_dir / filename).write_bytes(piece.to_bytes())
        entries.append(
            {
                "file": filename,
                "row": piece.row,
                "col": piece.col,
                "width": piece.width,
                "height": piece.height,
            }
        )
    manifest = {
        "source": source,
        "config": config.model_dump(mode="json"),
        "pieces": entries,
    }
    (out_dir / "manifest.json").write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    return manifest


def _print_pieces(manifest: dict[str, Any], out_dir: Path) -> None:
    table = Table("Row", "Col", "Size", "File", title=f"{len(manifest['pieces'])} pieces → {out_dir}")
    for entry in manifest["pieces"]:
        table.add_row(str(entry["row"]), str(entry["col"]), f"{entry['width']}x{entry['height']}", entry["file"])
    console.print(table)


def _print_layout(layout: GridLayout, width: int, height: int) -> None:
    table = Table("Field", "Value", title=f"Layout for {width}x{height} source")
    table.add_row("working canvas", f"{layout.canvas_width}x{layout.canvas_height} at ({layout.canvas_left}, {layout.canvas_top})")
    table.add_row("cell", f"{layout.cell_width}x{layout.cell_height}")
    table.add_row("grid", f"{layout.rows} rows x {layout.cols} cols")
    dropped_x, dropped_y = layout.dropped_px
    table.add_row("dropped px", f"{dropped_x} right, {dropped_y} bottom")
    console.print(table)


def _fail(detail: str, json_output: bool) -> None:
    if json_output:
        console.print_json(data={"status": "error", "detail": detail})
    else:
        console.print(f"[red]{detail}[/]")
    raise typer.Exit(1)


@cli.command()
def split(
    source: str = typer.Argument(..., help="Image path, file:// / http(s):// or data: URL"),
    mode: SplitMode = typer.Option(SplitMode.CROP, "--mode", help="crop (square cells) or stretch"),
    rows: int = typer.Option(3, "--rows", "-r", help="Number of cells down"),
    cols: int = typer.Option(3, "--cols", "-c", help="Number of cells across"),
    output_format: str = typer.Option("image/png", "--format", "-f", help="Output format id, e.g. image/jpeg"),
    quality: float = typer.Option(0.8, "--quality", "-q", help="Encoder quality in [0, 1]"),
    out: Path = typer.Option(Path("pieces"), "--out", "-o", help="Directory for piece files and manifest.json"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the computed layout without encoding."),
    json_output: bool = typer.Option(False, "--json", help="Print the manifest as JSON instead of a table."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Split SOURCE into a grid and write each piece to --out."""

    settings = _resolve_settings()
    _configure_logging(settings, verbose)
    splitter = ImageGridSplitter(
        {"mode": mode, "rows": rows, "cols": cols, "output_format": output_format, "quality": quality},
        settings=settings,
    )

    if dry_run:
        try:
            image = asyncio.run(acquire_image(source, settings=settings))
            layout = plan_layout(image.width, image.height, splitter.config)
        except GridSplitError as exc:
            _fail(str(exc), json_output)
        if json_output:
            console.print_json(
                data={
                    "source": {"width": image.width, "height": image.height},
                    "canvas": [layout.canvas_left, layout.canvas_top, layout.canvas_width, layout.canvas_height],
                    "cell": [layout.cell_width, layout.cell_height],
                    "dropped_px": list(layout.dropped_px),
                }
            )
        else:
            _print_layout(layout, image.width, image.height)
        return

    try:
        pieces = asyncio.run(splitter.split(source))
        manifest = _write_pieces(pieces, splitter.config, out, source)
    except GridSplitError as exc:
        _fail(str(exc), json_output)

    if json_output:
        console.print_json(data=manifest)
    else:
        _print_pieces(manifest, out)


@cli.command()
def preview(
    rows: int = typer.Option(3, "--rows", "-r", help="Number of cells down"),
    cols: int = typer.Option(3, "--cols", "-c", help="Number of cells across"),
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
) -> None:
    """Print percentage offsets of the grid divider lines."""

    lines = preview_grid_lines(rows, cols)
    if json_output:
        console.print_json(data=lines.model_dump(mode="json"))
        return
    table = Table("Axis", "Offsets (%)", title=f"Grid lines for {rows}x{cols}")
    table.add_row("horizontal", ", ".join(f"{value:.2f}" for value in lines.horizontal) or "—")
    table.add_row("vertical", ", ".join(f"{value:.2f}" for value in lines.vertical) or "—")
    console.print(table)


if __name__ == "__main__":
    cli()
