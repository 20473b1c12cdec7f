"""Derive channel count and grayscale flags for an import.

Transparency is a property of the source bitmap and lives in the codec.
"""

import logging

import numpy as np

from .records import CANONICAL_CHANNELS, CanonicalImage

logger = logging.getLogger("mipforge")

_CHANNELS_BY_BPP = {8: 1, 24: 3, 32: 4}


def channel_count(bpp: int) -> int:
    """Map a bit depth to its channel count; 0 means unsupported."""
    return _CHANNELS_BY_BPP.get(bpp, 0)


def is_grayscale(image: CanonicalImage) -> bool:
    """Return True when R == G == B for every pixel. Alpha is ignored.

    Scans the full buffer, so callers should evaluate it once per image.
    """
    if not image.data:
        return True
    pixels = np.frombuffer(image.data, dtype=np.uint8).reshape(-1, CANONICAL_CHANNELS)
    r, g, b = pixels[:, 0], pixels[:, 1], pixels[:, 2]
    gray = bool(np.array_equal(r, g) and np.array_equal(g, b))
    logger.debug(
        "Grayscale check on %dx%d image: %s", image.width, image.height, gray
    )
    return gray
