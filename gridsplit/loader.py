"""Turn deferred image sources into pixel-addressable canvases."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from typing import Callable, Union
from urllib.parse import unquote, unquote_to_bytes, urlparse

import httpx
import pyvips

from gridsplit.canvas import PixelSource, VipsCanvas
from gridsplit.errors import AcquisitionError
from gridsplit.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

ImageSource = Union[PixelSource, pyvips.Image, bytes, bytearray, memoryview, Path, str]


async def acquire_image(
    source: ImageSource,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> PixelSource:
    """Resolve ``source`` into a decoded canvas.

    Parameters
    ----------
    source:
        A ready ``PixelSource`` (returned untouched), a ``pyvips.Image``, raw
        encoded bytes, a filesystem path, or a ``file://``, ``data:``,
        ``http://`` or ``https://`` URL string.
    settings:
        Optional settings override; defaults to the global settings singleton.
    client:
        Optional ``httpx.AsyncClient`` used for remote sources (useful for
        tests). When omitted, a client is created for the duration of the fetch.
    """

    cfg = settings or get_settings()

    if isinstance(source, pyvips.Image):
        return VipsCanvas(source)
    if isinstance(source, PixelSource):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return await _decode_bytes(bytes(source), cfg, label="<bytes>")
    if isinstance(source, Path):
        return await _decode_file(source, cfg)
    if isinstance(source, str):
        try:
            parsed = urlparse(source)
        except ValueError as exc:
            raise AcquisitionError(f"malformed image URL {source!r}: {exc}") from exc
        scheme = parsed.scheme.lower()
        if scheme in {"http", "https"}:
            payload = await _fetch(source, cfg, client)
            return await _decode_bytes(payload, cfg, label=source)
        if scheme == "data":
            return await _decode_bytes(_parse_data_url(source), cfg, label="<data url>")
        if scheme == "file":
            return await _decode_file(Path(unquote(parsed.path)), cfg)
        return await _decode_file(Path(source), cfg)

    raise AcquisitionError(f"unsupported image source type {type(source).__name__}")


async def _fetch(url: str, settings: Settings, client: httpx.AsyncClient | None) -> bytes:
    owns_client = client is None
    http_client = client or httpx.AsyncClient(
        timeout=httpx.Timeout(settings.fetch_timeout_s),
        follow_redirects=True,
    )
    headers = {"User-Agent": settings.user_agent}
    LOGGER.debug("Fetching image source %s", url)
    try:
        async with http_client.stream("GET", url, headers=headers) as response:
            response.raise_for_status()
            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > settings.max_source_bytes:
                    raise AcquisitionError(
                        f"{url} exceeds max_source_bytes={settings.max_source_bytes}"
                    )
                chunks.append(chunk)
    except httpx.HTTPStatusError as exc:
        LOGGER.warning("Image fetch failed: status=%s url=%s", exc.response.status_code, url)
        raise AcquisitionError(f"{url} returned HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        LOGGER.warning("Image fetch failed: %s url=%s", exc, url)
        raise AcquisitionError(f"could not fetch {url}: {exc}") from exc
    finally:
        if owns_client:
            await http_client.aclose()
    return b"".join(chunks)


def _parse_data_url(url: str) -> bytes:
    header, sep, payload = url[5:].partition(",")
    if not sep:
        raise AcquisitionError("malformed data: URL (missing comma)")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise AcquisitionError(f"malformed base64 payload in data: URL: {exc}") from exc
    return unquote_to_bytes(payload)


async def _decode_file(path: Path, settings: Settings) -> PixelSource:
    try:
        if not path.is_file():
            raise AcquisitionError(f"image file not found: {path}")
        size = path.stat().st_size
    except (ValueError, OSError) as exc:
        raise AcquisitionError(f"could not read image file {str(path)[:80]!r}: {exc}") from exc
    if size > settings.max_source_bytes:
        raise AcquisitionError(f"{path} exceeds max_source_bytes={settings.max_source_bytes}")
    LOGGER.debug("Loading image file %s (%s bytes)", path, size)
    return await asyncio.to_thread(_render, lambda: pyvips.Image.new_from_file(str(path)), settings, str(path))


async def _decode_bytes(payload: bytes, settings: Settings, *, label: str) -> PixelSource:
    if not payload:
        raise AcquisitionError(f"empty image payload from {label}")
    if len(payload) > settings.max_source_bytes:
        raise AcquisitionError(f"{label} exceeds max_source_bytes={settings.max_source_bytes}")
    return await asyncio.to_thread(_render, lambda: pyvips.Image.new_from_buffer(payload, ""), settings, label)


def _render(open_image: Callable[[], pyvips.Image], settings: Settings, label: str) -> VipsCanvas:
    """Decode fully into memory so corrupt inputs fail here, not mid-split."""

    try:
        image = open_image()
        if settings.autorotate:
            image = image.autorot()
        if image.width * image.height > settings.max_pixels:
            raise AcquisitionError(
                f"{label} is {image.width}x{image.height}, over max_pixels={settings.max_pixels}"
            )
        image = image.copy_memory()
    except pyvips.Error as exc:
        LOGGER.warning("Could not decode image from %s: %s", label, exc)
        raise AcquisitionError(f"could not decode image from {label}: {exc}") from exc
    LOGGER.debug("Decoded %s: %sx%s, %s bands", label, image.width, image.height, image.bands)
    return VipsCanvas(image)
