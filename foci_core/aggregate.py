#!/usr/bin/env python
#
# FindFoci Optimiser - Multi-Image Aggregation
# © 2025 FindFoci Optimiser Authors
#

"""
Combine per-image result lists into one averaged, re-ranked list.
"""

import logging
import math
from typing import List, Sequence

from .exceptions import FociAggregationError
from .normalize import get_score
from .ranking import sort_results_by_score
from .schema import METRIC_COUNT, SCORE_RANK, SORT_RMSD, Metric, Result

logger = logging.getLogger(__name__)


def add_result(target: Result, other: Result) -> None:
    """Accumulate ``other`` into ``target``.

    RMSD is pooled by true-positive weighted squared error; counts, time
    and every other metric slot are summed.
    """
    sd1 = target.metrics[Metric.RMSD] ** 2 * target.tp
    sd2 = other.metrics[Metric.RMSD] ** 2 * other.tp
    total_tp = target.tp + other.tp
    target.metrics[Metric.RMSD] = math.sqrt((sd1 + sd2) / total_tp) if total_tp else 0.0

    target.n += other.n
    target.tp += other.tp
    target.fp += other.fp
    target.fn += other.fn
    target.time += other.time
    for i in range(METRIC_COUNT):
        if i != Metric.RMSD:
            target.metrics[i] += other.metrics[i]


def check_aligned(all_results: Sequence[Sequence[Result]]) -> None:
    """Require equal lengths and the same parameters at every index."""
    first = all_results[0]
    for image_index, results in enumerate(all_results[1:], start=1):
        if len(results) != len(first):
            raise FociAggregationError(
                "Result lists have different lengths",
                context={
                    "image_index": image_index,
                    "expected": len(first),
                    "actual": len(results),
                },
            )
        for i, (a, b) in enumerate(zip(first, results)):
            if a.parameters != b.parameters:
                raise FociAggregationError(
                    "Result lists are not in the same parameter order",
                    context={"image_index": image_index, "position": i},
                )


def combine_results(
    all_results: List[List[Result]], sort_method: int, scoring_mode: int
) -> List[Result]:
    """Merge per-image results into the first list and return it.

    Each list is scored with ``scoring_mode`` before merging. Every slot
    except RMSD is then averaged over the images; when sorting by RMSD the
    score is reset to the pooled RMSD. RMSD and rank scores sort lowest first.

    Raises:
        FociAggregationError: If there are no lists or they do not align.
    """
    if not all_results:
        raise FociAggregationError("No results to combine")
    check_aligned(all_results)

    results = all_results[0]
    get_score(results, sort_method, scoring_mode)
    for other in all_results[1:]:
        get_score(other, sort_method, scoring_mode)
        for r1, r2 in zip(results, other):
            add_result(r1, r2)

    factor = 1.0 / len(all_results)
    for result in results:
        for i in range(METRIC_COUNT):
            if i != Metric.RMSD:
                result.metrics[i] *= factor
        # TODO: decide whether precision-like slots should also be pooled rather than averaged
        if sort_method == SORT_RMSD:
            result.metrics[Metric.SCORE] = result.metrics[Metric.RMSD]

    # Averaged ranks and RMSD are better when lower
    lowest_first = sort_method == SORT_RMSD or scoring_mode == SCORE_RANK
    sort_results_by_score(results, lowest_first=lowest_first)
    logger.debug("Combined %d result lists of %d results", len(all_results), len(results))
    return results
