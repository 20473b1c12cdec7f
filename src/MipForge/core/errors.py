"""Exception types raised by the import pipeline."""


class MipForgeError(RuntimeError):
    """Base class for every failure an import request can end with."""


class InvalidPathError(MipForgeError):
    """Raised when the input path is empty or does not exist (or bytes are empty)."""


class UnsupportedFormatError(MipForgeError):
    """Raised when the codec cannot determine the image format."""


class UnsupportedBitDepthError(MipForgeError):
    """Raised when a bitmap is not 8, 24 or 32 bits per pixel."""


class DecodeError(MipForgeError):
    """Raised when the codec recognises the format but cannot decode the data."""


class RescaleError(MipForgeError):
    """Raised when a bitmap cannot be resampled to the requested size."""


class DeserializeError(MipForgeError):
    """Raised when an engine texture asset is truncated or malformed."""


class TextureNotReadyError(MipForgeError):
    """Raised when pixel data is read from a result that has not completed."""
