"""Shared test fixtures."""

import shutil
import tempfile

import numpy as np
import pytest
from PIL import Image

from MipForge.config import ImporterConfig


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return ImporterConfig()


def random_pixels(width, height, channels=3, seed=0):
    """Return a reproducible uint8 array of shape (H, W, C) or (H, W)."""
    rng = np.random.default_rng(seed)
    shape = (height, width) if channels == 1 else (height, width, channels)
    return rng.integers(0, 256, size=shape, dtype=np.uint8)


def save_test_png(path, width=64, height=64, channels=3, seed=0):
    """Create a random test PNG image and return its pixels."""
    arr = random_pixels(width, height, channels, seed)
    Image.fromarray(arr).save(path)
    return arr
