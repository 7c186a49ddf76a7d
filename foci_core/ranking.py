#!/usr/bin/env python
#
# FindFoci Optimiser - Result Ranking
# © 2025 FindFoci Optimiser Authors
#

"""
Deterministic multi-key ordering and dense ranking of results.

The comparator is an ordered table of ``(key, direction)`` pairs. Metric
keys always apply; the conservativeness keys apply only when both results
carry parsed options; elapsed time breaks the final tie. A direction of
``ASCENDING`` means the smaller value ranks first.
"""

from functools import cmp_to_key
from typing import Callable, List, Optional, Sequence, Tuple

from .schema import Metric, Result, get_sort_index

ASCENDING = 1
DESCENDING = -1

KeyFunc = Callable[[Result], float]

# Smaller blur and parameters are more conservative; higher background and
# peak method ordinals are more general.
CONSERVATIVE_KEYS: Tuple[Tuple[str, KeyFunc, int], ...] = (
    ("blur", lambda r: r.options.blur, ASCENDING),
    ("background_method", lambda r: r.options.background_method, DESCENDING),
    ("background_parameter", lambda r: r.options.background_parameter, ASCENDING),
    ("min_size", lambda r: r.options.min_size, ASCENDING),
    ("search_method", lambda r: r.options.search_method, ASCENDING),
    ("search_parameter", lambda r: r.options.search_parameter, ASCENDING),
    ("peak_method", lambda r: r.options.peak_method, DESCENDING),
    ("peak_parameter", lambda r: r.options.peak_parameter, ASCENDING),
)


def direction_of(index: int) -> int:
    """Natural direction of a metric slot (RANK and RMSD are lowest first)."""
    if index in (Metric.RANK, Metric.RMSD):
        return ASCENDING
    return DESCENDING


def tie_index_for(index: int) -> Metric:
    return Metric.JACCARD if index == Metric.RMSD else Metric.RMSD


def _metric_key(index: int) -> KeyFunc:
    return lambda r: r.metrics[index]


class ResultComparator:
    """Comparator over a key table built for one primary metric slot."""

    def __init__(self, sort_index: int, lowest_first: Optional[bool] = None) -> None:
        self.sort_index = Metric(sort_index)
        self.tie_index = tie_index_for(self.sort_index)
        if lowest_first is None:
            primary_direction = direction_of(self.sort_index)
        else:
            primary_direction = ASCENDING if lowest_first else DESCENDING
        self.metric_keys: List[Tuple[str, KeyFunc, int]] = [
            (self.sort_index.name, _metric_key(self.sort_index), primary_direction),
            (self.tie_index.name, _metric_key(self.tie_index), direction_of(self.tie_index)),
        ]

    def compare(self, a: Result, b: Result) -> int:
        for _, key, direction in self.metric_keys:
            result = _compare_values(key(a), key(b), direction)
            if result:
                return result
        if a.options is not None and b.options is not None:
            for _, key, direction in CONSERVATIVE_KEYS:
                result = _compare_values(key(a), key(b), direction)
                if result:
                    return result
        return _compare_values(a.time, b.time, ASCENDING)

    def __call__(self, a: Result, b: Result) -> int:
        return self.compare(a, b)


def _compare_values(x, y, direction: int) -> int:
    if x < y:
        return -direction
    if x > y:
        return direction
    return 0


def assign_rank(results: Sequence[Result], sort_index: int) -> None:
    """Dense rank on an already sorted list.

    Equal values share a rank; the next distinct value resumes at the
    previous rank plus the size of the tie.
    """
    if not results:
        return
    rank = 1
    count = 0
    value = results[0].metrics[sort_index]
    for result in results:
        if result.metrics[sort_index] != value:
            rank += count
            count = 0
            value = result.metrics[sort_index]
        result.metrics[Metric.RANK] = rank
        count += 1


def sort_and_assign_rank(
    results: List[Result], sort_index: int, comparator: ResultComparator
) -> None:
    results.sort(key=cmp_to_key(comparator))
    assign_rank(results, sort_index)


def sort_results(results: List[Result], sort_method: int) -> None:
    """Sort in place by a result sort method and assign ranks.

    Sort method ``None`` (0) leaves the list untouched.
    """
    if sort_method == 0:
        return
    sort_index = get_sort_index(sort_method)
    sort_and_assign_rank(results, sort_index, ResultComparator(sort_index))


def sort_results_by_score(results: List[Result], lowest_first: bool) -> None:
    sort_and_assign_rank(
        results, Metric.SCORE, ResultComparator(Metric.SCORE, lowest_first)
    )
