"""Build mip chains by rescaling the source bitmap once per level in parallel.

Every level is resampled straight from the level-0 source rather than from
the previous level, so filter error does not compound down the chain.
"""

import logging
from typing import List

import numpy as np
from scipy.ndimage import gaussian_filter

from ..config import ImporterConfig
from ..core import canonicalize, codec
from ..core.codec import DecodedBitmap
from ..core.errors import RescaleError
from ..core.records import CanonicalImage, MipLevel, mip_dimensions
from ..core.tasks import TaskPool

logger = logging.getLogger("mipforge.mipmap")


class MipmapGenerator:
    """Fan rescale-and-canonicalize work out to a task pool, fan results back in."""

    def __init__(self, config: ImporterConfig, pool: TaskPool):
        """Initialize mipmap generator with runtime configuration and a shared pool."""
        self.config = config
        self.cfg = config.mipmap
        self.pool = pool

    def generate(self, source: DecodedBitmap, base: CanonicalImage) -> List[MipLevel]:
        """Return the full chain, level 0 first.

        ``source`` is the bitmap ``base`` was canonicalized from; it is only
        read. Level 0 reuses ``base.data`` as-is.
        """
        if (source.width, source.height) != (base.width, base.height):
            raise ValueError(
                f"Source bitmap {source.width}x{source.height} does not match "
                f"canonical base {base.width}x{base.height}"
            )
        levels = [MipLevel(0, base.width, base.height, base.data)]
        targets = mip_dimensions(base.width, base.height)
        if not targets:
            return levels

        # One future per level; the future is the level's result slot.
        handles = [
            self.pool.submit(self._build_level, source, index, width, height)
            for index, (width, height) in enumerate(targets, start=1)
        ]
        self.pool.join_all(handles)
        built = [handle.result() for handle in handles]

        failed = [lvl for lvl in built if not lvl.complete]
        if failed and self.cfg.level_failure_policy == "fail":
            first = failed[0]
            raise RescaleError(
                f"{len(failed)} of {len(built)} mip levels failed; first was "
                f"level {first.level} ({first.width}x{first.height}): {first.error}"
            )
        levels.extend(built)
        logger.debug(
            "Generated %d mip levels for %dx%d (%d failed)",
            len(levels), base.width, base.height, len(failed),
        )
        return levels

    def _build_level(self, source: DecodedBitmap, level: int,
                     width: int, height: int) -> MipLevel:
        try:
            scaled = codec.rescale(source, width, height, self.cfg.filter_method)
            if self.cfg.sharpen_mips and level in self.cfg.sharpen_levels:
                scaled = self._sharpen(scaled)
            image = canonicalize(scaled)
        except Exception as e:
            logger.warning(
                "Failed to create mip level %d (%dx%d): %s", level, width, height, e
            )
            return MipLevel.placeholder(level, width, height, str(e))
        return MipLevel(level, image.width, image.height, image.data)

    def _sharpen(self, bitmap: DecodedBitmap) -> DecodedBitmap:
        """Unsharp-mask the color channels; alpha is left untouched."""
        pixels = bitmap.pixel_view().astype(np.float32)
        color_idx = sorted({bitmap.offsets.red, bitmap.offsets.green, bitmap.offsets.blue})
        color = pixels[:, :, color_idx]
        radius = self.cfg.sharpen_radius
        blurred = gaussian_filter(color, sigma=(radius, radius, 0))
        sharpened = color + self.cfg.sharpen_strength * (color - blurred)
        pixels[:, :, color_idx] = sharpened
        out = np.clip(np.round(pixels), 0, 255).astype(np.uint8)
        return DecodedBitmap.from_array(out, offsets=bitmap.offsets, fmt=bitmap.format)
