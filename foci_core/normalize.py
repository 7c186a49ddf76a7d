#!/usr/bin/env python
#
# FindFoci Optimiser - Score Normalisation
# © 2025 FindFoci Optimiser Authors
#

"""
Write a comparable score into the SCORE slot of ranked results.

Modes:
    Raw: copy of the sort metric.
    Z-score: ``(x - mean) / sd`` using the sample standard deviation; all
        zero when the deviation is zero.
    Relative: ``100 * (x - top) / top`` assuming the worst value is 0.
    Rank: copy of the dense rank.

A sort metric of RMSD is only used raw.
"""

import logging
from typing import Sequence

import numpy as np

from .schema import (
    SCORE_RANK,
    SCORE_RAW,
    SCORE_RELATIVE,
    SCORE_Z,
    Metric,
    Result,
    get_sort_index,
)

logger = logging.getLogger(__name__)


def get_score_index(sort_method: int, scoring_mode: int) -> Metric:
    if scoring_mode == SCORE_RANK:
        return Metric.RANK
    return get_sort_index(sort_method)


def get_score(results: Sequence[Result], sort_method: int, scoring_mode: int) -> None:
    """Set the SCORE slot of every result in place."""
    if not results:
        return
    index = get_score_index(sort_method, scoring_mode)
    if index == Metric.RMSD and scoring_mode != SCORE_RAW:
        logger.debug("RMSD scores are only used raw")
        scoring_mode = SCORE_RAW

    score = np.array([r.metrics[index] for r in results], dtype=np.float64)
    if scoring_mode == SCORE_Z:
        sd = float(np.std(score, ddof=1)) if len(score) > 1 else 0.0
        if sd > 0:
            score = (score - score.mean()) / sd
        else:
            score = np.zeros_like(score)
    elif scoring_mode == SCORE_RELATIVE:
        top = float(score.max())
        if top != 0:
            score = (100.0 / top) * (score - top)
        else:
            score = np.zeros_like(score)

    for result, value in zip(results, score):
        result.metrics[Metric.SCORE] = float(value)
