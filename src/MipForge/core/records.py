"""Request, pixel-buffer and result dataclasses."""

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import MipForgeError, TextureNotReadyError

CANONICAL_CHANNELS = 4


def mip_dimensions(width: int, height: int) -> List[Tuple[int, int]]:
    """Return the (width, height) of every level below the base.

    Halves with floor and clamps at 1 until both dimensions reach 1, giving
    ``floor(log2(max(width, height)))`` entries.
    """
    targets = []
    while width > 1 or height > 1:
        width = max(width // 2, 1)
        height = max(height // 2, 1)
        targets.append((width, height))
    return targets


def mip_level_count(width: int, height: int) -> int:
    """Return the full chain length including the base level."""
    if width < 1 or height < 1:
        return 0
    return int(math.log2(max(width, height))) + 1


class LoadState(Enum):
    """Enumerate the lifecycle states of one import request."""

    PENDING = "pending"
    LOADING = "loading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LoadState.COMPLETED, LoadState.FAILED)


@dataclass(frozen=True)
class ImageRequest:
    """Single import request. Either ``path`` or ``data`` carries the image.

    ``width``/``height`` of 0 keep the native size for that dimension. When
    ``data`` is given, ``path`` is only used as a name hint for format
    detection and log messages.
    """

    path: str = ""
    data: Optional[bytes] = None
    width: int = 0
    height: int = 0
    generate_mipmaps: bool = True

    def __post_init__(self) -> None:
        """Reject negative or non-integer target dimensions."""
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(
                    f"ImageRequest.{name} must be an int, got {type(value).__name__}"
                )
            if value < 0:
                raise ValueError(f"ImageRequest.{name} must be >= 0, got {value}")
        if self.data is not None and not isinstance(self.data, (bytes, bytearray)):
            raise ValueError(
                f"ImageRequest.data must be bytes, got {type(self.data).__name__}"
            )
        if isinstance(self.data, bytearray):
            object.__setattr__(self, "data", bytes(self.data))

    @property
    def source_label(self) -> str:
        """Return a short label for log messages."""
        if self.data is not None:
            return self.path or "<bytes>"
        return self.path


@dataclass(frozen=True)
class CanonicalImage:
    """Top-down, row-major RGBA8 pixel buffer."""

    width: int
    height: int
    data: bytes
    channels: int = field(default=CANONICAL_CHANNELS, init=False)

    def __post_init__(self) -> None:
        expected = self.width * self.height * CANONICAL_CHANNELS
        if len(self.data) != expected:
            raise ValueError(
                f"Canonical buffer for {self.width}x{self.height} must be "
                f"{expected} bytes, got {len(self.data)}"
            )


@dataclass(frozen=True)
class MipLevel:
    """One entry of a mip chain. Failed levels carry empty ``data``."""

    level: int
    width: int
    height: int
    data: bytes = b""
    complete: bool = True
    error: Optional[str] = None

    @classmethod
    def placeholder(cls, level: int, width: int, height: int, error: str) -> "MipLevel":
        """Build the zero-length stand-in recorded for a failed level."""
        return cls(level, width, height, b"", complete=False, error=error)


@dataclass
class TextureInfo:
    """Result record of one import request.

    Only the importer mutates it. Every field except ``load_state`` and
    ``failure`` is meaningful only once ``load_state`` is
    ``LoadState.COMPLETED``.
    """

    width: int = 0
    height: int = 0
    bpp: int = 0
    channels: int = 0
    source_channels: int = 0
    is_transparent: bool = False
    is_grayscale: bool = False
    rgba: bytes = b""
    mip_levels: List[MipLevel] = field(default_factory=list)
    load_state: LoadState = LoadState.PENDING
    failure: Optional[MipForgeError] = None
    warnings: List[str] = field(default_factory=list)
    source: str = ""
    load_seconds: float = 0.0
    _done: threading.Event = field(
        default_factory=threading.Event, init=False, repr=False, compare=False
    )

    @property
    def mips(self) -> List[bytes]:
        """Return the mip chain byte sequences, level 0 first."""
        return [level.data for level in self.mip_levels]

    @property
    def is_terminal(self) -> bool:
        return self.load_state.is_terminal

    @property
    def completed(self) -> bool:
        return self.load_state is LoadState.COMPLETED

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the request reaches a terminal state."""
        return self._done.wait(timeout)

    def buffer_levels(self) -> List[bytes]:
        """Return level data for GPU buffer creation.

        Without a mip chain the base image is returned as the only level.
        """
        if not self.completed:
            raise TextureNotReadyError(
                f"Texture '{self.source}' is not ready (state={self.load_state.value})"
            )
        if self.mip_levels:
            return self.mips
        return [self.rgba]

    def reset(self) -> None:
        """Return every field to its default and clear the completion event."""
        self.width = 0
        self.height = 0
        self.bpp = 0
        self.channels = 0
        self.source_channels = 0
        self.is_transparent = False
        self.is_grayscale = False
        self.rgba = b""
        self.mip_levels = []
        self.load_state = LoadState.PENDING
        self.failure = None
        self.warnings = []
        self.source = ""
        self.load_seconds = 0.0
        self._done.clear()

    def _finish(self, state: LoadState) -> None:
        self.load_state = state
        self._done.set()
