"""Tests for parallel mip chain generation."""

import math
import random
import threading
import unittest
from concurrent.futures import Future
from unittest import mock

import numpy as np
import pytest

from MipForge.config import ImporterConfig
from MipForge.core import TaskPool, canonicalize, codec
from MipForge.core.codec import DecodedBitmap
from MipForge.core.errors import RescaleError
from MipForge.core.records import mip_dimensions, mip_level_count
from MipForge.phases.mipmap import MipmapGenerator

from conftest import random_pixels


class ShuffledPool:
    """Task pool double that defers work and runs it in a random order on join."""

    def __init__(self, seed):
        self._rng = random.Random(seed)
        self._pending = []
        self.completion_order = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self._pending.append((future, fn, args, kwargs))
        return future

    def join_all(self, handles):
        self._rng.shuffle(self._pending)
        for future, fn, args, kwargs in self._pending:
            try:
                result = fn(*args, **kwargs)
            except Exception as e:  # noqa: BLE001
                future.set_exception(e)
            else:
                self.completion_order.append(result.level)
                future.set_result(result)
        self._pending = []
        return list(handles)


def _source_and_base(width, height, channels=4, seed=0):
    bmp = DecodedBitmap.from_array(random_pixels(width, height, channels, seed))
    return bmp, canonicalize(bmp)


class TestMipDimensions(unittest.TestCase):
    def test_square_chain(self):
        self.assertEqual(
            mip_dimensions(256, 256),
            [(128, 128), (64, 64), (32, 32), (16, 16), (8, 8), (4, 4), (2, 2), (1, 1)],
        )

    def test_one_by_one_has_no_levels(self):
        self.assertEqual(mip_dimensions(1, 1), [])

    def test_non_square_clamps_to_one(self):
        self.assertEqual(
            mip_dimensions(8, 2), [(4, 1), (2, 1), (1, 1)]
        )

    def test_strip_shrinks_to_one_by_one(self):
        self.assertEqual(mip_dimensions(1, 4), [(1, 2), (1, 1)])

    def test_odd_dimensions_floor(self):
        self.assertEqual(mip_dimensions(5, 3), [(2, 1), (1, 1)])

    def test_level_count_matches_log2(self):
        for w, h in ((256, 256), (256, 64), (3, 17), (1, 1), (1000, 1), (640, 480)):
            expected = int(math.floor(math.log2(max(w, h)))) + 1
            self.assertEqual(len(mip_dimensions(w, h)) + 1, expected, (w, h))
            self.assertEqual(mip_level_count(w, h), expected)


class TestMipmapGenerator(unittest.TestCase):
    def setUp(self):
        self.config = ImporterConfig()
        self.pool = TaskPool(4, name="test-rescale")

    def tearDown(self):
        self.pool.shutdown()

    @pytest.mark.slow
    def test_256_square_chain(self):
        source, base = _source_and_base(256, 256)
        levels = MipmapGenerator(self.config, self.pool).generate(source, base)
        self.assertEqual(len(levels), 9)
        self.assertEqual(
            [lvl.width for lvl in levels], [256, 128, 64, 32, 16, 8, 4, 2, 1]
        )
        self.assertEqual([lvl.level for lvl in levels], list(range(9)))
        self.assertIs(levels[0].data, base.data)
        for lvl in levels:
            self.assertTrue(lvl.complete)
            self.assertEqual(len(lvl.data), lvl.width * lvl.height * 4)

    def test_one_by_one_base(self):
        source, base = _source_and_base(1, 1)
        pool = mock.Mock(wraps=self.pool)
        levels = MipmapGenerator(self.config, pool).generate(source, base)
        self.assertEqual(len(levels), 1)
        self.assertEqual(levels[0].data, base.data)
        pool.submit.assert_not_called()

    def test_each_level_rescaled_from_source(self):
        source, base = _source_and_base(32, 32)
        calls = []
        real_rescale = codec.rescale
        lock = threading.Lock()

        def _spy(bitmap, width, height, filter_method="lanczos"):
            with lock:
                calls.append((bitmap, width, height))
            return real_rescale(bitmap, width, height, filter_method)

        with mock.patch.object(codec, "rescale", side_effect=_spy):
            MipmapGenerator(self.config, self.pool).generate(source, base)

        self.assertEqual(len(calls), 5)
        self.assertTrue(all(bitmap is source for bitmap, _, _ in calls))

    def test_levels_match_direct_rescale(self):
        source, base = _source_and_base(16, 8, channels=3)
        levels = MipmapGenerator(self.config, self.pool).generate(source, base)
        for lvl in levels[1:]:
            direct = canonicalize(codec.rescale(source, lvl.width, lvl.height))
            self.assertEqual(lvl.data, direct.data)

    def test_order_is_deterministic_under_shuffled_completion(self):
        source, base = _source_and_base(64, 32)
        reference = MipmapGenerator(self.config, self.pool).generate(source, base)
        orders = set()
        for seed in range(6):
            pool = ShuffledPool(seed)
            levels = MipmapGenerator(self.config, pool).generate(source, base)
            orders.add(tuple(pool.completion_order))
            self.assertEqual(
                [(lvl.level, lvl.width, lvl.height) for lvl in levels],
                [(lvl.level, lvl.width, lvl.height) for lvl in reference],
            )
            self.assertEqual([lvl.data for lvl in levels], [lvl.data for lvl in reference])
        self.assertGreater(len(orders), 1)

    def test_failed_level_becomes_placeholder(self):
        source, base = _source_and_base(16, 16)
        real_rescale = codec.rescale

        def _flaky(bitmap, width, height, filter_method="lanczos"):
            if width == 4:
                raise RescaleError("simulated resampler failure")
            return real_rescale(bitmap, width, height, filter_method)

        with mock.patch.object(codec, "rescale", side_effect=_flaky):
            with self.assertLogs("mipforge.mipmap", level="WARNING") as cm:
                levels = MipmapGenerator(self.config, self.pool).generate(source, base)

        self.assertEqual(len(levels), 5)
        broken = levels[2]
        self.assertEqual((broken.width, broken.height), (4, 4))
        self.assertFalse(broken.complete)
        self.assertEqual(broken.data, b"")
        self.assertIn("simulated", broken.error)
        self.assertTrue(all(lvl.complete for i, lvl in enumerate(levels) if i != 2))
        self.assertTrue(any("mip level 2" in msg for msg in cm.output))

    def test_fail_policy_raises(self):
        self.config.mipmap.level_failure_policy = "fail"
        source, base = _source_and_base(16, 16)
        with mock.patch.object(codec, "rescale", side_effect=RescaleError("boom")):
            with self.assertRaises(RescaleError) as ctx:
                MipmapGenerator(self.config, self.pool).generate(source, base)
        self.assertIn("4 of 4", str(ctx.exception))

    def test_mismatched_source_rejected(self):
        source, _ = _source_and_base(8, 8)
        _, other_base = _source_and_base(4, 4)
        with self.assertRaises(ValueError):
            MipmapGenerator(self.config, self.pool).generate(source, other_base)

    def test_sharpen_only_touches_configured_levels(self):
        source, base = _source_and_base(32, 32, channels=3)
        plain = MipmapGenerator(self.config, self.pool).generate(source, base)
        self.config.mipmap.sharpen_mips = True
        self.config.mipmap.sharpen_levels = [1]
        self.config.mipmap.sharpen_strength = 1.0
        sharp = MipmapGenerator(self.config, self.pool).generate(source, base)
        self.assertNotEqual(sharp[1].data, plain[1].data)
        for lvl_plain, lvl_sharp in zip(plain[2:], sharp[2:]):
            self.assertEqual(lvl_plain.data, lvl_sharp.data)

    def test_sharpen_leaves_alpha(self):
        pixels = random_pixels(16, 16, 4)
        source = DecodedBitmap.from_array(pixels)
        self.config.mipmap.sharpen_mips = True
        self.config.mipmap.sharpen_strength = 2.0
        gen = MipmapGenerator(self.config, self.pool)
        sharpened = gen._sharpen(source)
        np.testing.assert_array_equal(
            sharpened.pixel_view()[:, :, 3], pixels[:, :, 3]
        )


class TestTaskPool(unittest.TestCase):
    def test_join_all_waits_for_every_task(self):
        release = threading.Event()
        done = []

        def _work(i):
            release.wait(5)
            done.append(i)
            return i

        with TaskPool(3, name="test-join") as pool:
            handles = [pool.submit(_work, i) for i in range(6)]
            threading.Timer(0.05, release.set).start()
            joined = pool.join_all(handles)
            self.assertEqual(sorted(done), list(range(6)))
            self.assertEqual([h.result() for h in joined], list(range(6)))

    def test_join_all_empty(self):
        with TaskPool(1) as pool:
            self.assertEqual(pool.join_all([]), [])

    def test_default_worker_count(self):
        with TaskPool(0) as pool:
            self.assertGreaterEqual(pool.max_workers, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
