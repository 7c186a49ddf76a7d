#!/usr/bin/env python
#
# FindFoci Optimiser - Optimiser Tests
# © 2025 FindFoci Optimiser Authors
#

"""
Integration tests for single-image and batch optimisation runs.
"""

import collections
import logging
import os
import sys
import tempfile
import unittest

import cv2
import numpy as np

# Add project root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foci_core.exceptions import (  # noqa: E402
    FociAggregationError,
    FociConfigError,
    FociLoadError,
    FociStepLimitError,
)
from foci_core.optimiser import FociOptimiser, check_optimisation_space  # noqa: E402
from foci_core.options import Options  # noqa: E402
from foci_core.outputs.results_file import count_data_lines, load_params  # noqa: E402
from foci_core.parameters import build_parameter_space  # noqa: E402
from foci_core.schema import (  # noqa: E402
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    OPTION_MINIMUM_ABOVE_SADDLE,
    SORT_JACCARD,
    Metric,
    OptimiserConfig,
    OptimiserResult,
)
from foci_core.scoring import create_result  # noqa: E402
from foci_core.stages import BaseMaximaPipeline  # noqa: E402

REFERENCE = [(10.0, 10.0, 0.0), (30.0, 30.0, 0.0), (50.0, 50.0, 0.0)]


class CountingPipeline(BaseMaximaPipeline):
    """Returns the first ``min_size`` reference points whatever the image."""

    plugin_name = "counting"

    def __init__(self, fail_stage=None):
        self.calls = collections.Counter()
        self.fail_stage = fail_stage

    def _call(self, stage, handle):
        self.calls[stage] += 1
        if stage == self.fail_stage:
            raise RuntimeError("stage failed")
        return handle

    def init(self, image, blurred, mask, background_method, threshold_method, statistics_mode):
        return self._call("init", {})

    def search(self, init, background_method, background_parameter, search_method, search_parameter):
        return self._call("search", {})

    def merge_peak(self, init, search, peak_method, peak_parameter):
        return self._call("merge_peak", {})

    def merge_size(self, init, merge, min_size):
        return self._call("merge_size", {"min_size": min_size})

    def merge_final(self, init, merge, min_size, options, blur):
        return self._call("merge_final", dict(merge))

    def results(self, init, merge, max_peaks, sort_method, centre_method, centre_parameter):
        return self._call("results", REFERENCE[: merge["min_size"]])


class CancellingPipeline(CountingPipeline):
    """Cancels its optimiser after ``cancel_after`` result calls."""

    def __init__(self, cancel_after):
        super().__init__()
        self.cancel_after = cancel_after
        self.optimiser = None

    def results(self, init, merge, max_peaks, sort_method, centre_method, centre_parameter):
        points = super().results(init, merge, max_peaks, sort_method, centre_method, centre_parameter)
        if self.calls["results"] == self.cancel_after:
            self.optimiser.cancel()
        return points


def small_config(**overrides):
    values = dict(
        background_parameter="1, 2, 1",
        background_auto_threshold=False,
        search_fraction_of_peak=False,
        search_parameter="0",
        min_size="1, 3, 1",
        peak_parameter="0, 0.5, 0.5",
        gaussian_blur="0",
        sort_method="1",
        centre_method="0",
        num_workers=1,
    )
    values.update(overrides)
    return OptimiserConfig(**values)


def write_image(directory, name, points=True):
    path = os.path.join(directory, name)
    cv2.imwrite(path, np.zeros((64, 64), np.uint8))
    if points:
        base = os.path.splitext(path)[0]
        with open(base + ".csv", "w", encoding="utf-8") as fp:
            fp.write("X,Y\n10,10\n30,30\n50,50\n")
    return path


class TestRunSingle(unittest.TestCase):
    def test_best_result(self):
        progress = []
        optimiser = FociOptimiser(
            small_config(),
            pipeline=CountingPipeline(),
            progress=lambda done, total: progress.append((done, total)),
        )
        result = optimiser.run_single(np.zeros((64, 64), np.uint8), REFERENCE)

        self.assertEqual(len(result.results), 12)
        best = result.results[0]
        self.assertEqual(best.options.min_size, 3)
        self.assertEqual(best.options.background_parameter, 1.0)
        self.assertEqual(best.options.peak_parameter, 0.0)
        self.assertEqual(best.metrics[Metric.JACCARD], 1.0)
        self.assertEqual(best.metrics[Metric.SCORE], 1.0)
        self.assertEqual(best.metrics[Metric.RANK], 1)
        self.assertEqual(progress[-1], (12, 12))

    def test_ids_are_shared_across_runs(self):
        optimiser = FociOptimiser(small_config(), pipeline=CountingPipeline())
        first = optimiser.run_single(np.zeros((64, 64)), REFERENCE)
        second = optimiser.run_single(np.zeros((64, 64)), REFERENCE[:1])
        by_text = {r.parameters: r.id for r in first.results}
        for result in second.results:
            self.assertEqual(by_text[result.parameters], result.id)

    def test_step_limit(self):
        optimiser = FociOptimiser(small_config(step_limit=11), pipeline=CountingPipeline())
        with self.assertRaises(FociStepLimitError):
            optimiser.run_single(np.zeros((64, 64)), REFERENCE)

    def test_points_outside_mask(self):
        mask = np.zeros((64, 64), np.uint8)
        mask[60:, 60:] = 255
        optimiser = FociOptimiser(small_config(), pipeline=CountingPipeline())
        with self.assertRaises(FociConfigError):
            optimiser.run_single(np.zeros((64, 64)), REFERENCE, mask)

    def test_run_single_file_writes_results(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = write_image(tmp, "cells.png")
            out = os.path.join(tmp, "out")
            optimiser = FociOptimiser(small_config(), pipeline=CountingPipeline())
            result = optimiser.run_single_file(path, out)
            self.assertEqual(count_data_lines(os.path.join(out, "cells.results.xls")), 12)
            self.assertEqual(
                load_params(os.path.join(out, "cells.params")), result.results[0].options
            )

    def test_run_single_file_needs_points(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = write_image(tmp, "cells.png", points=False)
            optimiser = FociOptimiser(small_config(), pipeline=CountingPipeline())
            with self.assertRaises(FociLoadError):
                optimiser.run_single_file(path)


class TestRunBatch(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_batch_combines_and_reuses(self):
        write_image(self.tmp, "a.png")
        write_image(self.tmp, "b.png")
        with open(os.path.join(self.tmp, "readme.md"), "w", encoding="utf-8") as fp:
            fp.write("not an image")

        pipeline = CountingPipeline()
        with self.assertLogs("foci_core.optimiser", level="INFO") as logs:
            batch = FociOptimiser(small_config(), pipeline=pipeline).run_batch(self.tmp)

        self.assertFalse(batch.cancelled)
        self.assertEqual(batch.combinations, 12)
        self.assertEqual(sorted(batch.images), ["a.png", "b.png"])
        self.assertEqual(len(batch.combined), 12)
        self.assertEqual(batch.combined[0].options.min_size, 3)
        self.assertEqual(batch.combined[0].tp, 6)
        self.assertEqual(pipeline.calls["results"], 24)
        self.assertTrue(any("Skipping file" in line for line in logs.output))
        for name in ("a.results.xls", "b.results.xls", "all.results.xls"):
            self.assertTrue(os.path.isfile(os.path.join(self.tmp, name)))

        pipeline = CountingPipeline()
        again = FociOptimiser(small_config(), pipeline=pipeline).run_batch(self.tmp)
        self.assertTrue(all(o.reused for o in again.outcomes if o.result is not None))
        self.assertEqual(sum(pipeline.calls.values()), 0)
        self.assertEqual(
            [r.parameters for r in again.combined], [r.parameters for r in batch.combined]
        )

    def test_reuse_disabled(self):
        write_image(self.tmp, "a.png")
        FociOptimiser(small_config(), pipeline=CountingPipeline()).run_batch(self.tmp)
        pipeline = CountingPipeline()
        FociOptimiser(small_config(reuse_results=False), pipeline=pipeline).run_batch(self.tmp)
        self.assertEqual(pipeline.calls["results"], 12)

    def test_separate_output_directory(self):
        write_image(self.tmp, "a.png")
        out = os.path.join(self.tmp, "results")
        FociOptimiser(small_config(), pipeline=CountingPipeline()).run_batch(self.tmp, out)
        self.assertTrue(os.path.isfile(os.path.join(out, "all.results.xls")))
        self.assertFalse(os.path.exists(os.path.join(self.tmp, "a.results.xls")))

    def test_no_points_anywhere(self):
        write_image(self.tmp, "a.png", points=False)
        with self.assertRaises(FociAggregationError):
            FociOptimiser(small_config(), pipeline=CountingPipeline()).run_batch(self.tmp)

    def test_pipeline_errors_are_reported_per_image(self):
        write_image(self.tmp, "a.png")
        optimiser = FociOptimiser(
            small_config(), pipeline=CountingPipeline(fail_stage="merge_peak")
        )
        with self.assertLogs("foci_core.optimiser", level="ERROR"):
            with self.assertRaises(FociAggregationError):
                optimiser.run_batch(self.tmp)

    def test_empty_directory(self):
        with self.assertRaises(FociConfigError):
            FociOptimiser(small_config(), pipeline=CountingPipeline()).run_batch(self.tmp)

    def test_step_limit(self):
        write_image(self.tmp, "a.png")
        optimiser = FociOptimiser(small_config(step_limit=5), pipeline=CountingPipeline())
        with self.assertRaises(FociStepLimitError):
            optimiser.run_batch(self.tmp)

    def test_cancelled_before_start(self):
        write_image(self.tmp, "a.png")
        optimiser = FociOptimiser(small_config(), pipeline=CountingPipeline())
        optimiser.cancel()
        batch = optimiser.run_batch(self.tmp)
        self.assertTrue(batch.cancelled)
        self.assertIsNone(batch.combined)

    def test_cancelled_during_second_image(self):
        write_image(self.tmp, "a.png")
        write_image(self.tmp, "b.png")
        pipeline = CancellingPipeline(cancel_after=17)
        optimiser = FociOptimiser(small_config(), pipeline=pipeline)
        pipeline.optimiser = optimiser

        batch = optimiser.run_batch(self.tmp)

        self.assertTrue(batch.cancelled)
        self.assertIsNone(batch.combined)
        self.assertEqual(list(batch.images), ["a.png"])
        self.assertEqual(len(batch.images["a.png"].results), 12)
        self.assertLess(pipeline.calls["results"], 24)
        self.assertTrue(os.path.isfile(os.path.join(self.tmp, "a.results.xls")))
        self.assertFalse(os.path.exists(os.path.join(self.tmp, "b.results.xls")))
        self.assertFalse(os.path.exists(os.path.join(self.tmp, "all.results.xls")))


class TestCheckOptimisationSpace(unittest.TestCase):
    def setUp(self):
        self.space = build_parameter_space(small_config())

    def make_result(self, tp, fp, fn, elapsed=0):
        options = Options(
            blur=0.0,
            background_method=BACKGROUND_STD_DEV_ABOVE_MEAN,
            background_parameter=2.0,
            threshold_method="",
            search_method=0,
            search_parameter=0.0,
            max_peaks=500,
            min_size=3,
            peak_method=2,
            peak_parameter=0.5,
            sort_method=1,
            options=OPTION_MINIMUM_ABOVE_SADDLE,
            centre_method=0,
            centre_parameter=0,
        )
        result = create_result(1, options, tp + fp, tp, fp, fn, 1000, 4.0, 0.0)
        return OptimiserResult([result], elapsed_time=elapsed)

    def test_limits_reported_when_not_perfect(self):
        messages = check_optimisation_space(
            self.make_result(1, 1, 1), "cells", self.space, 12, SORT_JACCARD
        )
        self.assertEqual(len(messages), 1)
        level, text = messages[0]
        self.assertEqual(level, logging.WARNING)
        self.assertTrue(text.startswith("Optimal result (0.3333) for cells"))
        self.assertIn("- Background parameter @ upper limit (2)", text)
        self.assertIn("- Min Size @ upper limit (3)", text)
        self.assertIn("- Peak parameter @ upper limit (0.5)", text)
        self.assertNotIn("Search parameter", text)
        self.assertTrue(text.endswith("You may want to increase the optimisation space."))

    def test_perfect_result_only_reports_time(self):
        messages = check_optimisation_space(
            self.make_result(3, 0, 0, elapsed=2_000_000), "cells", self.space, 12, SORT_JACCARD
        )
        self.assertEqual(len(messages), 1)
        level, text = messages[0]
        self.assertEqual(level, logging.INFO)
        self.assertIn("cells Optimisation time = 0.002 sec", text)


if __name__ == "__main__":
    unittest.main()
