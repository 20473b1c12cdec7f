"""Tests for request and result records."""

import threading
import unittest

from MipForge.core import (
    ImageRequest, LoadState, MipLevel, TextureInfo, TextureNotReadyError,
)


class TestImageRequest(unittest.TestCase):
    def test_defaults(self):
        req = ImageRequest(path="brick.png")
        self.assertEqual((req.width, req.height), (0, 0))
        self.assertTrue(req.generate_mipmaps)
        self.assertEqual(req.source_label, "brick.png")

    def test_rejects_bad_dimensions(self):
        for kwargs in ({"width": -1}, {"height": -7}, {"width": 1.5}, {"height": True}):
            with self.assertRaises(ValueError):
                ImageRequest(path="a.png", **kwargs)

    def test_rejects_non_bytes_data(self):
        with self.assertRaises(ValueError):
            ImageRequest(data="not bytes")

    def test_bytearray_data_is_frozen(self):
        buf = bytearray(b"\x89PNG")
        req = ImageRequest(data=buf)
        buf[0] = 0
        self.assertIsInstance(req.data, bytes)
        self.assertEqual(req.data, b"\x89PNG")

    def test_bytes_label(self):
        self.assertEqual(ImageRequest(data=b"x").source_label, "<bytes>")
        self.assertEqual(ImageRequest(path="hint.png", data=b"x").source_label, "hint.png")


class TestMipLevel(unittest.TestCase):
    def test_placeholder(self):
        lvl = MipLevel.placeholder(3, 2, 2, "boom")
        self.assertEqual(lvl.data, b"")
        self.assertFalse(lvl.complete)
        self.assertEqual(lvl.error, "boom")


class TestTextureInfo(unittest.TestCase):
    def test_terminal_states(self):
        self.assertFalse(LoadState.PENDING.is_terminal)
        self.assertFalse(LoadState.LOADING.is_terminal)
        self.assertTrue(LoadState.COMPLETED.is_terminal)
        self.assertTrue(LoadState.FAILED.is_terminal)

    def test_wait_released_by_finish(self):
        info = TextureInfo()
        timer = threading.Timer(0.05, info._finish, args=(LoadState.COMPLETED,))
        timer.start()
        self.assertTrue(info.wait(5))
        self.assertTrue(info.completed)
        timer.join()

    def test_reset_clears_everything(self):
        info = TextureInfo(width=4, height=4, rgba=b"\x00" * 64,
                           mip_levels=[MipLevel(0, 4, 4, b"\x00" * 64)])
        info.warnings.append("w")
        info._finish(LoadState.COMPLETED)
        info.reset()
        self.assertEqual(info, TextureInfo())
        self.assertFalse(info.wait(0))

    def test_buffer_levels(self):
        info = TextureInfo(width=1, height=1, rgba=b"\x01\x02\x03\x04")
        with self.assertRaises(TextureNotReadyError):
            info.buffer_levels()
        info._finish(LoadState.FAILED)
        with self.assertRaises(TextureNotReadyError):
            info.buffer_levels()
        info.load_state = LoadState.COMPLETED
        self.assertEqual(info.buffer_levels(), [b"\x01\x02\x03\x04"])
        info.mip_levels = [MipLevel(0, 1, 1, info.rgba)]
        self.assertEqual(info.buffer_levels(), info.mips)


if __name__ == "__main__":
    unittest.main(verbosity=2)
