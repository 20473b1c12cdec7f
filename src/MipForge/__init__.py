"""Provide package metadata for `MipForge`.

The import API lives in :mod:`MipForge.importer`; data types in
:mod:`MipForge.core.records`.
"""

import logging as _logging

__version__ = "0.3.0"
_logger = _logging.getLogger("mipforge")

__all__ = ["__version__"]
