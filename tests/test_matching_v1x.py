#!/usr/bin/env python
#
# FindFoci Optimiser - Matching and Scoring Tests
# © 2025 FindFoci Optimiser Authors
#

"""
Unit tests for point matching, match metrics and the scorer.
"""

import math
import os
import sys
import unittest

# Add project root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foci_core.matching import MatchResult, match_points  # noqa: E402
from foci_core.schema import Metric  # noqa: E402
from foci_core.scoring import (  # noqa: E402
    Scorer,
    as_points,
    calculate_f_score,
    compute_metrics,
    create_result,
    distance_threshold,
    is_3d,
)


class TestMatchPoints(unittest.TestCase):
    def test_identical_points(self):
        points = [(1, 1, 0), (10, 10, 0), (20, 5, 0)]
        match = match_points(points, points, 2.0)
        self.assertEqual((match.n, match.tp, match.fp, match.fn), (3, 3, 0, 0))
        self.assertEqual(match.rmsd, 0.0)

    def test_distance_at_threshold_is_not_matched(self):
        match = match_points([(0, 0, 0)], [(3, 4, 0)], 5.0)
        self.assertEqual((match.tp, match.fp, match.fn), (0, 1, 1))

    def test_rmsd_over_true_positives(self):
        match = match_points([(0, 0, 0), (50, 50, 0)], [(3, 4, 0)], 10.0)
        self.assertEqual((match.n, match.tp, match.fp, match.fn), (1, 1, 0, 1))
        self.assertAlmostEqual(match.rmsd, 5.0)

    def test_closest_pair_is_matched_first(self):
        # The predicted point at x=2 is closer to the reference at x=3 than
        # the reference at x=0 is, so x=0 is left unmatched.
        match = match_points([(0, 0, 0), (3, 0, 0)], [(2, 0, 0)], 5.0)
        self.assertEqual(match.tp, 1)
        self.assertAlmostEqual(match.rmsd, 1.0)

    def test_each_point_used_once(self):
        match = match_points([(0, 0, 0)], [(0, 0, 0), (1, 0, 0)], 5.0)
        self.assertEqual((match.tp, match.fp, match.fn), (1, 1, 0))

    def test_empty_inputs(self):
        self.assertEqual(
            match_points([], [(1, 1, 0)], 5.0), MatchResult(1, 0, 1, 0, 0.0)
        )
        self.assertEqual(
            match_points([(1, 1, 0)], [], 5.0), MatchResult(0, 0, 0, 1, 0.0)
        )

    def test_z_only_used_in_3d(self):
        reference = [(0, 0, 1)]
        predicted = [(0, 0, 9)]
        self.assertEqual(match_points(reference, predicted, 2.0).tp, 1)
        self.assertEqual(match_points(reference, predicted, 2.0, is_3d=True).tp, 0)


class TestMetrics(unittest.TestCase):
    def test_f_score(self):
        self.assertAlmostEqual(calculate_f_score(0.5, 0.5, 1.0), 0.5)
        self.assertEqual(calculate_f_score(0.0, 0.0, 1.0), 0.0)

    def test_compute_metrics(self):
        metrics = compute_metrics(tp=2, fp=1, fn=1, rmsd=1.5, beta=4.0)
        self.assertAlmostEqual(metrics[Metric.PRECISION], 2 / 3)
        self.assertAlmostEqual(metrics[Metric.RECALL], 2 / 3)
        self.assertAlmostEqual(metrics[Metric.JACCARD], 0.5)
        self.assertAlmostEqual(metrics[Metric.F1], 2 / 3)
        self.assertAlmostEqual(metrics[Metric.FB], 2 / 3)
        self.assertEqual(metrics[Metric.RMSD], 1.5)
        self.assertEqual(metrics[Metric.RANK], 0.0)
        self.assertEqual(metrics[Metric.SCORE], 0.0)

    def test_no_points_gives_zero_metrics(self):
        metrics = compute_metrics(0, 0, 0, 0.0, 1.0)
        self.assertEqual(metrics, [0.0] * len(Metric))

    def test_create_result(self):
        result = create_result(7, None, 3, 2, 1, 0, 1000, 1.0, 0.5, text="abc")
        self.assertEqual(result.id, 7)
        self.assertEqual(result.parameters, "abc")
        self.assertAlmostEqual(result.metrics[Metric.RECALL], 1.0)


class TestScorer(unittest.TestCase):
    def test_relative_threshold_rounds_up(self):
        self.assertEqual(distance_threshold(64, 80, 0.25, absolute=False), 16.0)
        self.assertEqual(distance_threshold(10, 10, 0.25, absolute=False), 3.0)

    def test_absolute_threshold_below_one_warns(self):
        with self.assertLogs("foci_core.scoring", level="WARNING"):
            self.assertEqual(distance_threshold(64, 64, 0.5, absolute=True), 0.5)

    def test_is_3d(self):
        self.assertTrue(is_3d([(1, 1, 1), (2, 2, 3)]))
        self.assertFalse(is_3d([(1, 1, 1), (2, 2, 0)]))
        self.assertFalse(is_3d([(1, 1)]))
        self.assertFalse(is_3d([]))

    def test_as_points_pads_z(self):
        self.assertEqual(as_points([(1, 2)]), [(1.0, 2.0, 0.0)])

    def test_score(self):
        scorer = Scorer([(5, 5, 0), (20, 20, 0)], threshold=3.0, beta=1.0)
        result = scorer.score(4, None, [(5, 6, 0)], time=99)
        self.assertEqual((result.id, result.n, result.tp, result.fp, result.fn), (4, 1, 1, 0, 1))
        self.assertEqual(result.time, 99)
        self.assertAlmostEqual(result.metrics[Metric.RMSD], 1.0)

    def test_custom_matcher(self):
        calls = []

        def matcher(reference, predicted, threshold, three_d):
            calls.append((len(reference), len(predicted), threshold, three_d))
            return MatchResult(len(predicted), 0, len(predicted), len(reference), 0.0)

        scorer = Scorer([(1, 1, 2)], threshold=math.pi, beta=1.0, matcher=matcher)
        scorer.score(1, None, [(1, 1, 2), (3, 3, 2)], time=0)
        self.assertEqual(calls, [(1, 2, math.pi, True)])


if __name__ == "__main__":
    unittest.main()
