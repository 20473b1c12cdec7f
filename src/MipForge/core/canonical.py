"""Convert decoded bitmaps into the canonical top-down RGBA8 layout."""

import numpy as np

from .codec import DecodedBitmap
from .errors import DecodeError, UnsupportedBitDepthError
from .records import CANONICAL_CHANNELS, CanonicalImage

_SUPPORTED_BPP = (8, 24, 32)


def canonicalize(bitmap: DecodedBitmap) -> CanonicalImage:
    """Copy every scanline of ``bitmap`` into a packed R,G,B,A buffer.

    Channels are gathered through the bitmap's reported offsets, so BGR(A)
    or gray sources need no special casing. Missing alpha becomes 255.
    """
    if bitmap.bpp not in _SUPPORTED_BPP:
        raise UnsupportedBitDepthError(
            f"Cannot canonicalize {bitmap.bpp}-bit bitmap (supported: 8, 24, 32)"
        )
    width, height = bitmap.width, bitmap.height
    if width == 0:
        raise DecodeError("Cannot canonicalize a bitmap with zero width")

    bytes_pp = bitmap.line // width
    offsets = bitmap.offsets
    channel_index = [offsets.red, offsets.green, offsets.blue]
    if max(channel_index) >= bytes_pp or (
        offsets.alpha is not None and offsets.alpha >= bytes_pp
    ):
        raise DecodeError(
            f"Channel offsets {offsets} exceed {bytes_pp} bytes per pixel"
        )

    out = np.empty((height, width, CANONICAL_CHANNELS), dtype=np.uint8)
    if offsets.alpha is None:
        out[:, :, 3] = 255
    for y in range(height):
        row = np.frombuffer(bitmap.scanline(y), dtype=np.uint8, count=bitmap.line)
        pixels = row.reshape(width, bytes_pp)
        out[y, :, :3] = pixels[:, channel_index]
        if offsets.alpha is not None:
            out[y, :, 3] = pixels[:, offsets.alpha]

    return CanonicalImage(width, height, out.tobytes())
