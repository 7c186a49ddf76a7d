#!/usr/bin/env python
#
# FindFoci Optimiser - Simple Pipeline Tests
# © 2025 FindFoci Optimiser Authors
#

"""
Tests for the built-in numpy/OpenCV maxima pipeline on synthetic spots.
"""

import os
import sys
import unittest

import numpy as np

# Add project root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foci_core.exceptions import FociPipelineError  # noqa: E402
from foci_core.schema import (  # noqa: E402
    BACKGROUND_ABSOLUTE,
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    CENTRE_MAX_VALUE_SEARCH,
    CENTRE_OF_MASS_SEARCH,
    OPTION_MINIMUM_ABOVE_SADDLE,
    PEAK_RELATIVE_ABOVE_BACKGROUND,
    SEARCH_ABOVE_BACKGROUND,
    SORT_INTENSITY,
)
from foci_core.stages import SimpleMaximaPipeline  # noqa: E402

SPOTS = [(10, 10), (30, 30), (50, 50)]


def spot_image(amplitudes=(100.0, 100.0, 100.0), sigma=2.0):
    ys, xs = np.mgrid[0:64, 0:64]
    image = np.full((64, 64), 10.0)
    for (x, y), amplitude in zip(SPOTS, amplitudes):
        image += amplitude * np.exp(-((xs - x) ** 2 + (ys - y) ** 2) / (2 * sigma**2))
    return image.astype(np.float32)


class TestSimpleMaximaPipeline(unittest.TestCase):
    def setUp(self):
        self.pipeline = SimpleMaximaPipeline()
        self.image = spot_image()

    def run_pipeline(
        self,
        image=None,
        background_method=BACKGROUND_STD_DEV_ABOVE_MEAN,
        background_parameter=1.0,
        min_size=1,
        max_peaks=10,
        centre_method=CENTRE_MAX_VALUE_SEARCH,
        centre_parameter=0,
    ):
        image = self.image if image is None else image
        pipeline = self.pipeline
        init = pipeline.init(image, image, None, background_method, "Otsu", 0)
        search_init = pipeline.clone(init)
        search = pipeline.search(
            search_init, background_method, background_parameter, SEARCH_ABOVE_BACKGROUND, 0
        )
        merge = pipeline.merge_peak(search_init, search, PEAK_RELATIVE_ABOVE_BACKGROUND, 0.0)
        merge = pipeline.merge_size(search_init, merge, min_size)
        merge_init = pipeline.clone(search_init)
        merge = pipeline.merge_final(
            merge_init, merge, min_size, OPTION_MINIMUM_ABOVE_SADDLE, 0.0
        )
        return pipeline.results(
            merge_init, merge, max_peaks, SORT_INTENSITY, centre_method, centre_parameter
        )

    def test_finds_every_spot(self):
        maxima = self.run_pipeline()
        self.assertEqual(
            sorted(maxima), sorted((float(x), float(y), 0.0) for x, y in SPOTS)
        )

    def test_brightest_spot_first(self):
        self.image = spot_image(amplitudes=(50.0, 150.0, 100.0))
        maxima = self.run_pipeline()
        self.assertEqual(maxima[0][:2], (30.0, 30.0))

    def test_max_peaks_limits_output(self):
        self.assertEqual(len(self.run_pipeline(max_peaks=2)), 2)

    def test_min_size_removes_small_regions(self):
        self.assertEqual(self.run_pipeline(min_size=10000), [])

    def test_background_above_every_peak(self):
        maxima = self.run_pipeline(
            background_method=BACKGROUND_ABSOLUTE, background_parameter=1000.0
        )
        self.assertEqual(maxima, [])

    def test_centre_of_mass(self):
        maxima = self.run_pipeline(centre_method=CENTRE_OF_MASS_SEARCH, centre_parameter=2)
        for x, y, z in maxima:
            self.assertTrue(
                any(abs(x - sx) < 1e-3 and abs(y - sy) < 1e-3 for sx, sy in SPOTS)
            )

    def test_clone_keeps_init_background(self):
        init = self.pipeline.init(self.image, self.image, None, BACKGROUND_ABSOLUTE, "", 0)
        branch = self.pipeline.clone(init)
        self.pipeline.search(branch, BACKGROUND_ABSOLUTE, 42.0, SEARCH_ABOVE_BACKGROUND, 0)
        self.assertEqual(branch.background, 42.0)
        self.assertEqual(init.background, 0.0)

    def test_mask_limits_maxima(self):
        mask = np.zeros((64, 64), np.uint8)
        mask[:20, :20] = 1
        init = self.pipeline.init(
            self.image, self.image, mask, BACKGROUND_STD_DEV_ABOVE_MEAN, "", 0
        )
        positions = {(int(x), int(y)) for y, x, _ in init.maxima}
        self.assertIn((10, 10), positions)
        self.assertNotIn((30, 30), positions)

    def test_blur(self):
        blurred = self.pipeline.blur(self.image, 1.0)
        self.assertEqual(blurred.shape, self.image.shape)
        self.assertLess(float(blurred.max()), float(self.image.max()))
        self.assertIs(self.pipeline.blur(self.image, 0), self.image)

    def test_stacks_are_rejected(self):
        stack = np.zeros((2, 8, 8), np.float32)
        with self.assertRaises(FociPipelineError) as ctx:
            self.pipeline.init(stack, stack, None, BACKGROUND_ABSOLUTE, "", 0)
        self.assertEqual(ctx.exception.stage, "init")


if __name__ == "__main__":
    unittest.main()
