"""Engine-native texture container (``.texture``) read/write.

Layout (little-endian)::

    header   <4sHHIIBBBBI  magic, version, reserved, width, height,
                           bpp, channels, source_channels, flags, level_count
    level    <IIQ          width, height, byte_length, then the bytes

Without a mip chain the file holds a single level with the base image.
Zero-length levels are placeholders for mips that failed to build.
"""

import logging
import os
import struct
import threading
from pathlib import Path
from typing import Optional, Union

from .errors import DeserializeError
from .records import (
    CANONICAL_CHANNELS, LoadState, MipLevel, TextureInfo, mip_dimensions,
    mip_level_count,
)

logger = logging.getLogger("mipforge")

MAGIC = b"MFTX"
VERSION = 1
_HEADER = struct.Struct("<4sHHIIBBBBI")
_LEVEL = struct.Struct("<IIQ")

FLAG_TRANSPARENT = 0x1
FLAG_GRAYSCALE = 0x2
FLAG_MIPMAPS = 0x4


def is_engine_texture(path: str = "", data: Optional[bytes] = None,
                      ext: str = ".texture") -> bool:
    """Return True for a ``.texture`` path or a buffer starting with the magic."""
    if data is not None:
        return bytes(data[:len(MAGIC)]) == MAGIC
    return bool(path) and Path(path).suffix.lower() == ext.lower()


def serialize_texture(info: TextureInfo, path: str) -> None:
    """Write a completed ``TextureInfo`` to ``path`` atomically."""
    if info.load_state is not LoadState.COMPLETED:
        raise ValueError(
            f"Only completed textures can be serialized (state={info.load_state.value})"
        )
    flags = 0
    if info.is_transparent:
        flags |= FLAG_TRANSPARENT
    if info.is_grayscale:
        flags |= FLAG_GRAYSCALE
    if info.mip_levels:
        flags |= FLAG_MIPMAPS
        levels = [(lvl.width, lvl.height, lvl.data) for lvl in info.mip_levels]
    else:
        levels = [(info.width, info.height, info.rgba)]

    parent_dir = os.path.dirname(path) or "."
    os.makedirs(parent_dir, exist_ok=True)
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}"
    try:
        with open(tmp_path, "wb") as f:
            f.write(_HEADER.pack(
                MAGIC, VERSION, 0, info.width, info.height, info.bpp,
                info.channels, info.source_channels, flags, len(levels),
            ))
            for width, height, data in levels:
                f.write(_LEVEL.pack(width, height, len(data)))
                f.write(data)
        os.replace(tmp_path, path)
        logger.debug("Saved engine texture: %s (%d levels)", path, len(levels))
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def _read_exact(buf: memoryview, offset: int, size: int, what: str) -> memoryview:
    if offset + size > len(buf):
        raise DeserializeError(
            f"Truncated engine texture: {what} needs {size} bytes at offset "
            f"{offset}, only {len(buf) - offset} left"
        )
    return buf[offset:offset + size]


def deserialize_texture(source: Union[str, bytes], info: TextureInfo) -> None:
    """Fill ``info`` from an engine texture file path or its raw bytes.

    Does not change ``info.load_state``; the importer owns state transitions.
    """
    if isinstance(source, (bytes, bytearray)):
        raw = bytes(source)
    else:
        try:
            with open(source, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise DeserializeError(f"Failed to read engine texture {source}: {e}") from e

    buf = memoryview(raw)
    header = _read_exact(buf, 0, _HEADER.size, "header")
    (magic, version, _reserved, width, height, bpp, channels,
     source_channels, flags, level_count) = _HEADER.unpack(header)
    if magic != MAGIC:
        raise DeserializeError(f"Not an engine texture (magic={magic!r})")
    if version > VERSION:
        raise DeserializeError(
            f"Engine texture version {version} is newer than supported ({VERSION})"
        )
    if level_count < 1:
        raise DeserializeError("Engine texture holds no image data")

    offset = _HEADER.size
    levels = []
    for index in range(level_count):
        lvl_w, lvl_h, length = _LEVEL.unpack(
            _read_exact(buf, offset, _LEVEL.size, f"level {index} header")
        )
        offset += _LEVEL.size
        expected = lvl_w * lvl_h * CANONICAL_CHANNELS
        if length not in (0, expected):
            raise DeserializeError(
                f"Level {index} ({lvl_w}x{lvl_h}) has {length} bytes, expected {expected}"
            )
        data = bytes(_read_exact(buf, offset, length, f"level {index} data"))
        offset += length
        if length:
            levels.append(MipLevel(index, lvl_w, lvl_h, data))
        else:
            levels.append(MipLevel.placeholder(
                index, lvl_w, lvl_h, "level missing in engine texture"
            ))

    base = levels[0]
    if not base.complete:
        raise DeserializeError("Engine texture base level is empty")
    if (base.width, base.height) != (width, height):
        raise DeserializeError(
            f"Engine texture header says {width}x{height} but base level is "
            f"{base.width}x{base.height}"
        )
    if flags & FLAG_MIPMAPS:
        expected_sizes = [(width, height)] + mip_dimensions(width, height)
        sizes = [(lvl.width, lvl.height) for lvl in levels]
        if sizes != expected_sizes:
            raise DeserializeError(
                f"Engine texture mip chain for {width}x{height} must hold "
                f"{mip_level_count(width, height)} levels {expected_sizes}, "
                f"got {sizes}"
            )
    elif level_count != 1:
        raise DeserializeError(
            f"Engine texture without mipmaps must hold one level, got {level_count}"
        )
    if offset != len(buf):
        logger.warning(
            "Engine texture has %d trailing bytes; ignoring them.", len(buf) - offset
        )

    info.width = width
    info.height = height
    info.bpp = bpp
    info.channels = channels
    info.source_channels = source_channels
    info.is_transparent = bool(flags & FLAG_TRANSPARENT)
    info.is_grayscale = bool(flags & FLAG_GRAYSCALE)
    info.rgba = levels[0].data
    info.mip_levels = levels if flags & FLAG_MIPMAPS else []
