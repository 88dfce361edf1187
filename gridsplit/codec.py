"""Encode canvases into image payloads via pyvips savers."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass

import pyvips

from gridsplit.canvas import PixelSource, VipsCanvas
from gridsplit.errors import EncodingError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SaverSpec:
    """How one MIME-like format id maps onto a libvips saver."""

    media_type: str
    suffix: str
    lossy: bool
    alpha: bool


_SAVERS: dict[str, SaverSpec] = {
    "image/png": SaverSpec("image/png", ".png", lossy=False, alpha=True),
    "image/jpeg": SaverSpec("image/jpeg", ".jpg", lossy=True, alpha=False),
    "image/webp": SaverSpec("image/webp", ".webp", lossy=True, alpha=True),
    "image/tiff": SaverSpec("image/tiff", ".tif", lossy=False, alpha=True),
    "image/avif": SaverSpec("image/avif", ".avif", lossy=True, alpha=True),
}
_ALIASES = {"image/jpg": "image/jpeg"}


def saver_for(format_id: str) -> SaverSpec:
    key = format_id.strip().lower()
    key = _ALIASES.get(key, key)
    try:
        return _SAVERS[key]
    except KeyError:
        raise EncodingError(f"unsupported output format {format_id!r}") from None


def file_extension(format_id: str) -> str:
    """Return the filename suffix (without the dot) for ``format_id``."""

    return saver_for(format_id).suffix.lstrip(".")


def quality_to_q(quality: float) -> int:
    """Map a [0, 1] quality onto the libvips 1-100 ``Q`` scale."""

    return max(1, min(100, round(quality * 100)))


def encode_bytes(canvas: PixelSource, format_id: str, quality: float) -> bytes:
    """Encode ``canvas`` with the saver registered for ``format_id``."""

    spec = saver_for(format_id)
    if not isinstance(canvas, VipsCanvas):
        raise EncodingError(f"cannot encode {type(canvas).__name__}; expected VipsCanvas")

    image = canvas.image
    if not spec.alpha and image.hasalpha():
        image = image.flatten(background=[0] * (image.bands - 1))

    options: dict[str, int] = {}
    if spec.lossy:
        options["Q"] = quality_to_q(quality)
    try:
        return image.write_to_buffer(spec.suffix, **options)
    except pyvips.Error as exc:
        LOGGER.warning("libvips %s save failed: %s", spec.suffix, exc)
        raise EncodingError(f"could not encode {spec.media_type}: {exc}") from exc


def encode_data_url(canvas: PixelSource, format_id: str, quality: float) -> str:
    """Encode ``canvas`` and wrap the payload in a base64 ``data:`` URL."""

    payload = encode_bytes(canvas, format_id, quality)
    media_type = saver_for(format_id).media_type
    return f"data:{media_type};base64,{base64.b64encode(payload).decode('ascii')}"
