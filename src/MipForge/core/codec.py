"""Codec adapter -- decode, detect and resample images with Pillow/OpenCV.

Decoded images are promoted to one of three scanline layouts (8-bit gray,
24-bit RGB, 32-bit RGBA) and stored in a read-only, 4-byte aligned buffer,
so every later stage only has to understand those three bit depths.
"""

import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import (
    DecodeError,
    RescaleError,
    UnsupportedBitDepthError,
    UnsupportedFormatError,
)

# Pillow's global decompression bomb check is replaced by the per-call
# max_pixels guard in decode(); the global one would need a lock around
# every parallel open.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("mipforge.codec")

ImageSource = Union[str, os.PathLike, bytes, bytearray]

_SCANLINE_ALIGN = 4

# Resampling filters. Pillow filters widen their kernel when minifying, which
# is what a mip chain built straight from level 0 needs.
PIL_FILTERS = {
    "lanczos": Image.Resampling.LANCZOS,
    "bicubic": Image.Resampling.BICUBIC,
    "bilinear": Image.Resampling.BILINEAR,
    "hamming": Image.Resampling.HAMMING,
    "box": Image.Resampling.BOX,
    "nearest": Image.Resampling.NEAREST,
}
CV2_FILTERS = {
    "area": cv2.INTER_AREA,
}
FILTER_METHODS = frozenset(PIL_FILTERS) | frozenset(CV2_FILTERS)


@dataclass(frozen=True)
class ChannelOffsets:
    """Byte offset of each channel inside one pixel. ``alpha`` may be None."""

    red: int
    green: int
    blue: int
    alpha: Optional[int] = None


GRAY_OFFSETS = ChannelOffsets(0, 0, 0, None)
RGB_OFFSETS = ChannelOffsets(0, 1, 2, None)
RGBA_OFFSETS = ChannelOffsets(0, 1, 2, 3)
_DEFAULT_OFFSETS = {8: GRAY_OFFSETS, 24: RGB_OFFSETS, 32: RGBA_OFFSETS}


def _aligned_pitch(line: int) -> int:
    return (line + _SCANLINE_ALIGN - 1) // _SCANLINE_ALIGN * _SCANLINE_ALIGN


class DecodedBitmap:
    """Read-only decoded image with scanline access.

    ``line`` is the number of meaningful bytes in a scanline
    (``width * bpp / 8``); ``pitch`` is the stored scanline length, which may
    include alignment padding.
    """

    def __init__(self, storage: np.ndarray, width: int, bpp: int,
                 offsets: Optional[ChannelOffsets] = None,
                 fmt: Optional[str] = None):
        """Wrap a ``(height, pitch)`` uint8 buffer without copying it."""
        if storage.dtype != np.uint8 or storage.ndim != 2:
            raise ValueError(
                f"Bitmap storage must be a 2D uint8 array, got "
                f"{storage.dtype} with shape {storage.shape}"
            )
        if bpp % 8:
            raise UnsupportedBitDepthError(f"Unsupported bit depth: {bpp}")
        line = width * (bpp // 8)
        if line > storage.shape[1]:
            raise ValueError(
                f"Scanline of {line} bytes does not fit pitch {storage.shape[1]}"
            )
        storage.flags.writeable = False
        self._storage = storage
        self.width = int(width)
        self.height = int(storage.shape[0])
        self.bpp = int(bpp)
        self.line = line
        self.pitch = int(storage.shape[1])
        self.offsets = offsets or _DEFAULT_OFFSETS.get(bpp, RGBA_OFFSETS)
        self.format = fmt

    @classmethod
    def from_array(cls, pixels: np.ndarray,
                   offsets: Optional[ChannelOffsets] = None,
                   fmt: Optional[str] = None) -> "DecodedBitmap":
        """Pack an ``(H, W)`` or ``(H, W, C)`` uint8 array into aligned scanlines."""
        arr = np.asarray(pixels)
        if arr.dtype != np.uint8:
            raise ValueError(f"Pixel array must be uint8, got {arr.dtype}")
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3 or arr.shape[2] not in (1, 3, 4):
            raise UnsupportedBitDepthError(
                f"Cannot build a bitmap from array with shape {arr.shape}"
            )
        height, width, channels = arr.shape
        line = width * channels
        storage = np.zeros((height, _aligned_pitch(line)), dtype=np.uint8)
        storage[:, :line] = arr.reshape(height, line)
        return cls(storage, width, channels * 8, offsets=offsets, fmt=fmt)

    @property
    def bytes_per_pixel(self) -> int:
        return self.bpp // 8

    def scanline(self, y: int) -> memoryview:
        """Return the stored scanline ``y`` (padding included)."""
        if not 0 <= y < self.height:
            raise IndexError(f"Scanline {y} out of range for height {self.height}")
        return self._storage[y].data

    def pixel_view(self) -> np.ndarray:
        """Return a read-only ``(H, W, C)`` view without scanline padding."""
        return self._storage[:, :self.line].reshape(
            self.height, self.width, self.bytes_per_pixel
        )

    def __repr__(self) -> str:
        return (
            f"DecodedBitmap({self.width}x{self.height}, bpp={self.bpp}, "
            f"pitch={self.pitch}, format={self.format})"
        )


def _open_target(source: ImageSource):
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(bytes(source))
    return os.fspath(source)


def detect_format(source: ImageSource) -> Optional[str]:
    """Identify the image format from its content. Returns None when unknown."""
    try:
        with Image.open(_open_target(source)) as img:
            logger.debug("Detected format %s from content", img.format)
            return img.format
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("Content-based format detection failed: %s", e)
        return None


def detect_format_from_filename(path: str) -> Optional[str]:
    """Map a file extension to a Pillow format id that supports reading."""
    ext = Path(str(path)).suffix.lower()
    if not ext:
        return None
    fmt = Image.registered_extensions().get(ext)
    if fmt is None or fmt not in Image.OPEN:
        logger.debug("No readable format registered for extension '%s'", ext)
        return None
    return fmt


def _integer_mode_bit_depth(img: Image.Image) -> int:
    """Infer the source bit depth of a Pillow mode ``I`` image."""
    bits_info = img.info.get("bits")
    if isinstance(bits_info, int) and bits_info > 0:
        return bits_info
    tag_v2 = getattr(img, "tag_v2", None)
    if tag_v2 is not None:
        bits_tag = tag_v2.get(258)
        if isinstance(bits_tag, tuple) and bits_tag:
            bits_tag = bits_tag[0]
        if isinstance(bits_tag, int) and bits_tag > 0:
            return bits_tag
    # Pillow promotes 16-bit PNG/TIFF grayscale to "I".
    return 16


def _rescale_to_uint8(arr: np.ndarray, max_value: float) -> np.ndarray:
    scaled = np.clip(arr.astype(np.float64) / max_value, 0.0, 1.0) * 255.0
    return np.round(scaled).astype(np.uint8)


def _to_pixels(img: Image.Image, source_label: str) -> np.ndarray:
    """Promote any supported Pillow mode to an 8-bit L, RGB or RGBA array."""
    mode = img.mode
    if mode in ("L", "RGB", "RGBA"):
        return np.asarray(img, dtype=np.uint8)
    if mode == "1":
        with img.convert("L") as converted:
            return np.asarray(converted, dtype=np.uint8)
    if mode == "P":
        has_alpha = (
            "transparency" in img.info
            or getattr(img.palette, "mode", "RGB") == "RGBA"
        )
        target = "RGBA" if has_alpha else "RGB"
        logger.debug("Expanding palette image '%s' from P->%s", source_label, target)
        with img.convert(target) as converted:
            return np.asarray(converted, dtype=np.uint8)
    if mode in ("LA", "PA", "La", "RGBa"):
        with img.convert("RGBA") as converted:
            return np.asarray(converted, dtype=np.uint8)
    if mode in ("RGBX", "CMYK", "YCbCr", "LAB", "HSV"):
        logger.debug("Converting %s image '%s' to RGB", mode, source_label)
        with img.convert("RGB") as converted:
            return np.asarray(converted, dtype=np.uint8)
    if mode in ("I;16", "I;16L", "I;16B", "I;16N"):
        logger.debug("Reducing 16-bit image '%s' to 8-bit gray", source_label)
        return _rescale_to_uint8(np.asarray(img), 65535.0)
    if mode == "I":
        bit_depth = min(_integer_mode_bit_depth(img), 32)
        logger.debug(
            "Reducing integer image '%s' (inferred %d-bit) to 8-bit gray",
            source_label, bit_depth,
        )
        return _rescale_to_uint8(np.asarray(img), float((1 << bit_depth) - 1))
    if mode == "F":
        arr = np.asarray(img, dtype=np.float32)
        if float(arr.min()) < 0.0 or float(arr.max()) > 1.0:
            logger.warning(
                "Float image '%s' has range [%.4f, %.4f]; clipping to [0, 1].",
                source_label, float(arr.min()), float(arr.max()),
            )
        return _rescale_to_uint8(arr, 1.0)
    raise UnsupportedBitDepthError(
        f"Unsupported pixel mode '{mode}' in {source_label}"
    )


def decode(source: ImageSource, fmt: Optional[str], max_pixels: int = 0,
           flip_vertical: bool = False) -> DecodedBitmap:
    """Decode ``source`` as ``fmt`` into a top-down bitmap.

    ``fmt`` None raises ``UnsupportedFormatError``. ``max_pixels`` 0 disables
    the size guard. ``flip_vertical`` stores the image bottom-up
    for consumers with a lower-left texture origin.
    """
    if fmt is None:
        raise UnsupportedFormatError("Image format could not be determined")
    label = "<bytes>" if isinstance(source, (bytes, bytearray)) else os.fspath(source)
    try:
        with Image.open(_open_target(source), formats=[fmt]) as img:
            if max_pixels > 0 and img.width * img.height > max_pixels:
                raise DecodeError(
                    f"Image too large: {img.width}x{img.height} = "
                    f"{img.width * img.height:,} pixels (max {max_pixels:,})"
                )
            img.load()
            pixels = _to_pixels(img, label)
    except (DecodeError, UnsupportedBitDepthError):
        raise
    except Exception as e:
        logger.error("Failed to decode '%s' as %s: %s", label, fmt, e)
        raise DecodeError(f"Failed to decode {label} as {fmt}: {e}") from e

    if flip_vertical:
        pixels = pixels[::-1]
    bitmap = DecodedBitmap.from_array(pixels, fmt=fmt)
    logger.debug("Decoded %s: %r", label, bitmap)
    return bitmap


def rescale(bitmap: DecodedBitmap, width: int, height: int,
            filter_method: str = "lanczos") -> DecodedBitmap:
    """Resample ``bitmap`` to ``width`` x ``height`` into a new bitmap.

    Safe to call concurrently on the same source. Source storage is read-only
    and only read here; a padded source is gathered into a contiguous array
    first, an unpadded one is resampled from its shared view.
    """
    if width < 1 or height < 1:
        raise RescaleError(f"Invalid rescale target {width}x{height}")
    if filter_method not in FILTER_METHODS:
        raise RescaleError(f"Unknown resampling filter '{filter_method}'")
    if bitmap.width < 1 or bitmap.height < 1:
        raise RescaleError(f"Cannot rescale empty bitmap {bitmap!r}")

    src = np.ascontiguousarray(bitmap.pixel_view())
    channels = src.shape[2]
    try:
        if filter_method in CV2_FILTERS:
            resized = cv2.resize(
                src, (width, height), interpolation=CV2_FILTERS[filter_method]
            )
        else:
            plane = src[:, :, 0] if channels == 1 else src
            with Image.fromarray(plane) as img:
                with img.resize((width, height), PIL_FILTERS[filter_method]) as out:
                    resized = np.asarray(out, dtype=np.uint8)
    except Exception as e:
        raise RescaleError(
            f"Failed to rescale {bitmap.width}x{bitmap.height} to "
            f"{width}x{height}: {e}"
        ) from e

    if resized.ndim == 2:
        resized = resized[:, :, None]
    return DecodedBitmap.from_array(resized, offsets=bitmap.offsets, fmt=bitmap.format)


def is_transparent(bitmap: DecodedBitmap) -> bool:
    """Return True when the bitmap has an alpha channel with any non-opaque pixel."""
    alpha = bitmap.offsets.alpha
    if alpha is None or bitmap.width == 0 or bitmap.height == 0:
        return False
    return bool((bitmap.pixel_view()[:, :, alpha] < 255).any())


def get_bpp(bitmap: DecodedBitmap) -> int:
    return bitmap.bpp


def get_dimensions(bitmap: DecodedBitmap) -> Tuple[int, int]:
    return bitmap.width, bitmap.height


def scanline(bitmap: DecodedBitmap, y: int) -> memoryview:
    return bitmap.scanline(y)


def save_rgba(data: bytes, width: int, height: int, path: str) -> None:
    """Write a canonical RGBA buffer as an image file.

    Uses an atomic write (temp file + ``os.replace``) so a crash never leaves
    a truncated file behind.
    """
    if width < 1 or height < 1 or len(data) != width * height * 4:
        raise ValueError(
            f"Cannot save {len(data)} bytes as a {width}x{height} RGBA image to {path}"
        )
    ext = Path(path).suffix.lower()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    import threading as _th
    tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
    try:
        with Image.frombytes("RGBA", (width, height), bytes(data)) as img:
            if ext in (".jpg", ".jpeg"):
                with img.convert("RGB") as converted:
                    converted.save(tmp_path)
            else:
                img.save(tmp_path)
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%dx%d RGBA)", path, width, height)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
