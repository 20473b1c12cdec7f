"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    MipForgeError,
    InvalidPathError,
    UnsupportedFormatError,
    UnsupportedBitDepthError,
    DecodeError,
    RescaleError,
    DeserializeError,
    TextureNotReadyError,
)
from .records import (
    LoadState, ImageRequest, CanonicalImage, MipLevel, TextureInfo,
    mip_dimensions, mip_level_count,
)
from .codec import (
    ChannelOffsets,
    DecodedBitmap,
    detect_format,
    detect_format_from_filename,
    decode,
    rescale,
    get_bpp,
    get_dimensions,
    scanline,
    is_transparent,
    save_rgba,
)
from .canonical import canonicalize
from .classify import channel_count, is_grayscale
from .tasks import TaskPool
from .asset import is_engine_texture, serialize_texture, deserialize_texture
from .logging import setup_logging

__all__ = [
    "MipForgeError", "InvalidPathError", "UnsupportedFormatError",
    "UnsupportedBitDepthError", "DecodeError", "RescaleError",
    "DeserializeError", "TextureNotReadyError",
    "LoadState", "ImageRequest", "CanonicalImage", "MipLevel", "TextureInfo",
    "mip_dimensions", "mip_level_count",
    "ChannelOffsets", "DecodedBitmap",
    "detect_format", "detect_format_from_filename", "decode", "rescale",
    "get_bpp", "get_dimensions", "scanline", "save_rgba",
    "canonicalize",
    "channel_count", "is_grayscale", "is_transparent",
    "TaskPool",
    "is_engine_texture", "serialize_texture", "deserialize_texture",
    "setup_logging",
]
