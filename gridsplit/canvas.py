"""Pixel-addressable canvases backed by pyvips."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import pyvips

from gridsplit.errors import ContextUnavailableError

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class PixelSource(Protocol):
    """Anything the splitter can measure and copy rectangles out of."""

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    def copy_region(self, left: int, top: int, width: int, height: int) -> "PixelSource": ...


class VipsCanvas:
    """Wrap a ``pyvips.Image`` behind the ``PixelSource`` protocol."""

    __slots__ = ("image",)

    def __init__(self, image: pyvips.Image) -> None:
        self.image = image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def copy_region(self, left: int, top: int, width: int, height: int) -> "VipsCanvas":
        """Copy a rectangle into its own memory buffer, unscaled."""

        try:
            region = self.image.crop(left, top, width, height).copy_memory()
        except pyvips.Error as exc:
            LOGGER.warning(
                "Could not allocate %sx%s buffer at (%s, %s): %s",
                width,
                height,
                left,
                top,
                exc,
            )
            raise ContextUnavailableError(
                f"could not copy {width}x{height} region at ({left}, {top}): {exc}"
            ) from exc
        return VipsCanvas(region)

    def __repr__(self) -> str:
        return f"VipsCanvas({self.width}x{self.height}, bands={self.image.bands})"
