#!/usr/bin/env python
#
# FindFoci Optimiser - Ranking Tests
# © 2025 FindFoci Optimiser Authors
#

"""
Unit tests for result ordering and dense ranking.
"""

import os
import sys
import unittest

# Add project root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foci_core.options import Options  # noqa: E402
from foci_core.ranking import (  # noqa: E402
    ASCENDING,
    DESCENDING,
    ResultComparator,
    assign_rank,
    direction_of,
    sort_results,
    sort_results_by_score,
)
from foci_core.schema import (  # noqa: E402
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    SORT_JACCARD,
    SORT_NONE,
    SORT_RMSD,
    Metric,
    Result,
)


def make_result(result_id, jaccard=0.0, rmsd=0.0, time=0, options=None):
    result = Result(result_id, options, 0, 0, 0, 0, time, text=f"p{result_id}")
    result.metrics[Metric.JACCARD] = jaccard
    result.metrics[Metric.RMSD] = rmsd
    return result


def make_options(blur=0.0, background_parameter=1.0, min_size=1):
    return Options(
        blur=blur,
        background_method=BACKGROUND_STD_DEV_ABOVE_MEAN,
        background_parameter=background_parameter,
        threshold_method="",
        search_method=0,
        search_parameter=0,
        max_peaks=10,
        min_size=min_size,
        peak_method=0,
        peak_parameter=0,
        sort_method=1,
        options=0,
        centre_method=0,
        centre_parameter=0,
    )


def ids(results):
    return [r.id for r in results]


class TestDirections(unittest.TestCase):
    def test_natural_directions(self):
        self.assertEqual(direction_of(Metric.JACCARD), DESCENDING)
        self.assertEqual(direction_of(Metric.RMSD), ASCENDING)
        self.assertEqual(direction_of(Metric.RANK), ASCENDING)


class TestComparator(unittest.TestCase):
    def test_higher_metric_first(self):
        results = [make_result(1, 0.2), make_result(2, 0.9), make_result(3, 0.5)]
        sort_results(results, SORT_JACCARD)
        self.assertEqual(ids(results), [2, 3, 1])

    def test_tie_broken_by_lower_rmsd(self):
        results = [make_result(1, 0.5, rmsd=2.0), make_result(2, 0.5, rmsd=1.0)]
        sort_results(results, SORT_JACCARD)
        self.assertEqual(ids(results), [2, 1])

    def test_rmsd_sort_is_ascending_with_jaccard_tie_break(self):
        results = [
            make_result(1, 0.2, rmsd=1.0),
            make_result(2, 0.9, rmsd=1.0),
            make_result(3, 0.1, rmsd=0.5),
        ]
        sort_results(results, SORT_RMSD)
        self.assertEqual(ids(results), [3, 2, 1])

    def test_conservative_parameters_break_ties(self):
        results = [
            make_result(1, 0.5, options=make_options(blur=1.0)),
            make_result(2, 0.5, options=make_options(blur=0.0, min_size=3)),
            make_result(3, 0.5, options=make_options(blur=0.0, min_size=1)),
        ]
        sort_results(results, SORT_JACCARD)
        self.assertEqual(ids(results), [3, 2, 1])

    def test_time_is_final_tie_break(self):
        results = [make_result(1, 0.5, time=20), make_result(2, 0.5, time=10)]
        sort_results(results, SORT_JACCARD)
        self.assertEqual(ids(results), [2, 1])

    def test_missing_options_skip_parameter_keys(self):
        a = make_result(1, 0.5, time=5, options=make_options(blur=2.0))
        b = make_result(2, 0.5, time=10)
        comparator = ResultComparator(Metric.JACCARD)
        self.assertLess(comparator(a, b), 0)

    def test_lowest_first_override(self):
        comparator = ResultComparator(Metric.SCORE, lowest_first=True)
        a = make_result(1)
        b = make_result(2)
        a.metrics[Metric.SCORE] = 1.0
        b.metrics[Metric.SCORE] = 2.0
        self.assertLess(comparator(a, b), 0)


class TestRanking(unittest.TestCase):
    def test_ties_share_rank_and_next_rank_skips(self):
        results = [
            make_result(1, 0.9),
            make_result(2, 0.9),
            make_result(3, 0.8),
            make_result(4, 0.7),
        ]
        assign_rank(results, Metric.JACCARD)
        self.assertEqual([r.metrics[Metric.RANK] for r in results], [1, 1, 3, 4])

    def test_sort_none_leaves_order(self):
        results = [make_result(1, 0.1), make_result(2, 0.9)]
        sort_results(results, SORT_NONE)
        self.assertEqual(ids(results), [1, 2])
        self.assertEqual(results[0].metrics[Metric.RANK], 0.0)

    def test_sort_by_score(self):
        results = [make_result(1), make_result(2), make_result(3)]
        for result, score in zip(results, (0.5, 2.0, 1.0)):
            result.metrics[Metric.SCORE] = score
        sort_results_by_score(results, lowest_first=False)
        self.assertEqual(ids(results), [2, 3, 1])
        sort_results_by_score(results, lowest_first=True)
        self.assertEqual(ids(results), [1, 3, 2])
        self.assertEqual(results[0].metrics[Metric.RANK], 1)

    def test_empty_list(self):
        results = []
        sort_results(results, SORT_JACCARD)
        self.assertEqual(results, [])


if __name__ == "__main__":
    unittest.main()
