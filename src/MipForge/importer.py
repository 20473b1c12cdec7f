"""Orchestrate one image import end-to-end.

`ImageImporter` sequences validation, decode, optional target rescale,
canonicalization, classification and mip chain generation, and owns the
state transitions of the `TextureInfo` it fills.
"""

import logging
import os
import time
from concurrent.futures import Future
from typing import Optional, Union

from .config import ImporterConfig
from .core import codec
from .core.asset import deserialize_texture, is_engine_texture
from .core.canonical import canonicalize
from .core.classify import channel_count, is_grayscale
from .core.codec import is_transparent
from .core.errors import (
    InvalidPathError,
    MipForgeError,
    UnsupportedBitDepthError,
    UnsupportedFormatError,
)
from .core.records import CANONICAL_CHANNELS, ImageRequest, LoadState, TextureInfo
from .core.tasks import TaskPool
from .phases.mipmap import MipmapGenerator

logger = logging.getLogger("mipforge")


class ImageImporter:
    """Import images into canonical RGBA textures with optional mip chains.

    Mip levels are built on ``rescale_pool``; ``load_async`` runs whole
    imports on a separate ``import_pool`` so an import waiting on its levels
    never occupies a worker its own levels need. Pools passed in are not
    shut down by :meth:`close`.
    """

    def __init__(
        self,
        config: Optional[ImporterConfig] = None,
        rescale_pool: Optional[TaskPool] = None,
        import_pool: Optional[TaskPool] = None,
    ):
        """Initialize importer with configuration and (optionally shared) pools."""
        self.config = config or ImporterConfig()
        self.config.validate()
        self._owns_rescale_pool = rescale_pool is None
        self._owns_import_pool = import_pool is None
        self.rescale_pool = rescale_pool or TaskPool(
            self.config.mipmap.max_workers, name="mipforge-rescale"
        )
        self._import_pool = import_pool
        self.mipmaps = MipmapGenerator(self.config, self.rescale_pool)

    @property
    def import_pool(self) -> TaskPool:
        if self._import_pool is None:
            self._import_pool = TaskPool(self.config.max_workers, name="mipforge-import")
        return self._import_pool

    def load_async(self, request: ImageRequest, info: TextureInfo) -> Future:
        """Submit :meth:`load` to the import pool; the future resolves to its bool.

        Call ``info.wait()`` or ``future.result()`` before reading ``info``.
        """
        return self.import_pool.submit(self.load, request, info)

    def load(self, request: ImageRequest, info: TextureInfo) -> bool:
        """Run the import synchronously. Returns True when ``info`` completed."""
        info.reset()
        info.source = request.source_label
        info.load_state = LoadState.LOADING
        start = time.monotonic()
        try:
            self._run(request, info)
        except MipForgeError as e:
            logger.warning("Failed to import '%s': %s", request.source_label, e)
            self._fail(info, e)
            return False
        except Exception as e:
            logger.error(
                "Unexpected error importing '%s': %s", request.source_label, e,
                exc_info=True,
            )
            wrapped = MipForgeError(f"Unexpected error: {e}")
            wrapped.__cause__ = e
            self._fail(info, wrapped)
            return False

        info.load_seconds = time.monotonic() - start
        info._finish(LoadState.COMPLETED)
        logger.info(
            "Imported %s (%dx%d, %d mip levels) in %.3fs",
            info.source, info.width, info.height, len(info.mip_levels),
            info.load_seconds,
        )
        return True

    @staticmethod
    def _fail(info: TextureInfo, error: MipForgeError) -> None:
        source = info.source
        info.reset()
        info.source = source
        info.failure = error
        info._finish(LoadState.FAILED)

    def _run(self, request: ImageRequest, info: TextureInfo) -> None:
        self._validate(request)
        source = request.data if request.data is not None else request.path

        if is_engine_texture(
            "" if request.data is not None else request.path,
            request.data,
            self.config.engine_texture_ext,
        ):
            logger.debug("Loading engine texture %s directly", request.source_label)
            deserialize_texture(source, info)
            return

        fmt = self._detect_format(request, source)
        bitmap = codec.decode(
            source, fmt,
            max_pixels=self.config.decode.max_image_pixels,
            flip_vertical=self.config.decode.flip_vertical,
        )

        target_w = request.width or bitmap.width
        target_h = request.height or bitmap.height
        if (target_w, target_h) != (bitmap.width, bitmap.height):
            logger.debug(
                "Rescaling %s from %dx%d to %dx%d",
                request.source_label, bitmap.width, bitmap.height, target_w, target_h,
            )
            bitmap = codec.rescale(
                bitmap, target_w, target_h, self.config.decode.rescale_filter
            )

        source_channels = channel_count(bitmap.bpp)
        if source_channels == 0:
            raise UnsupportedBitDepthError(
                f"Unsupported bit depth {bitmap.bpp} in {request.source_label}"
            )
        transparent = is_transparent(bitmap)
        base = canonicalize(bitmap)

        levels = []
        if request.generate_mipmaps:
            levels = self.mipmaps.generate(bitmap, base)
            for level in levels:
                if not level.complete:
                    info.warnings.append(
                        f"mip level {level.level} ({level.width}x{level.height}): {level.error}"
                    )

        info.width = base.width
        info.height = base.height
        info.bpp = CANONICAL_CHANNELS * 8
        info.channels = CANONICAL_CHANNELS
        info.source_channels = source_channels
        info.is_transparent = transparent
        info.is_grayscale = is_grayscale(base)
        info.rgba = base.data
        info.mip_levels = levels

    @staticmethod
    def _validate(request: ImageRequest) -> None:
        if request.data is not None:
            if not request.data:
                raise InvalidPathError("Can't load image. No image data has been provided.")
            return
        if not request.path:
            raise InvalidPathError("Can't load image. No file path has been provided.")
        if not os.path.isfile(request.path):
            raise InvalidPathError(
                f"Can't load image. File path \"{request.path}\" is invalid."
            )

    def _detect_format(self, request: ImageRequest, source) -> str:
        fmt = codec.detect_format(source)
        if fmt is not None:
            return fmt
        if not (self.config.decode.extension_fallback and request.path):
            raise UnsupportedFormatError(
                f"Failed to determine image format for \"{request.source_label}\""
            )
        logger.warning(
            "Failed to determine image format for \"%s\", attempting to detect "
            "it from the file's extension...", request.source_label,
        )
        fmt = codec.detect_format_from_filename(request.path)
        if fmt is None:
            raise UnsupportedFormatError(
                f"Failed to detect the image format of \"{request.source_label}\""
            )
        logger.warning("Detected format %s from the file extension.", fmt)
        return fmt

    def close(self) -> None:
        """Shut down the pools this importer created."""
        if self._owns_import_pool and self._import_pool is not None:
            self._import_pool.shutdown(wait=True)
            self._import_pool = None
        if self._owns_rescale_pool:
            self.rescale_pool.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def import_texture(
    source: Union[str, bytes],
    width: int = 0,
    height: int = 0,
    generate_mipmaps: bool = True,
    config: Optional[ImporterConfig] = None,
) -> TextureInfo:
    """Import one image synchronously and return its result record."""
    if isinstance(source, (bytes, bytearray)):
        request = ImageRequest(
            data=bytes(source), width=width, height=height,
            generate_mipmaps=generate_mipmaps,
        )
    else:
        request = ImageRequest(
            path=os.fspath(source), width=width, height=height,
            generate_mipmaps=generate_mipmaps,
        )
    info = TextureInfo()
    with ImageImporter(config) as importer:
        importer.load(request, info)
    return info
