#!/usr/bin/env python
#
# FindFoci Optimiser - Scoring
# © 2025 FindFoci Optimiser Authors
#

"""
Turn predicted maxima into match metrics against the reference points.
"""

import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from .matching import MatchResult, match_points
from .schema import METRIC_COUNT, Metric, Result

logger = logging.getLogger(__name__)

Point = Tuple[float, float, float]
Matcher = Callable[[Sequence[Point], Sequence[Point], float, bool], MatchResult]


def calculate_f_score(precision: float, recall: float, beta: float) -> float:
    """F-beta score; 0 when undefined."""
    b2 = beta * beta
    denominator = b2 * precision + recall
    if denominator == 0:
        return 0.0
    f = ((1.0 + b2) * precision * recall) / denominator
    return 0.0 if math.isnan(f) else f


def compute_metrics(tp: int, fp: int, fn: int, rmsd: float, beta: float) -> List[float]:
    metrics = [0.0] * METRIC_COUNT
    if tp + fp > 0:
        metrics[Metric.PRECISION] = tp / (tp + fp)
    if tp + fn > 0:
        metrics[Metric.RECALL] = tp / (tp + fn)
    if tp + fp + fn > 0:
        metrics[Metric.JACCARD] = tp / (tp + fp + fn)
    precision = metrics[Metric.PRECISION]
    recall = metrics[Metric.RECALL]
    metrics[Metric.F05] = calculate_f_score(precision, recall, 0.5)
    metrics[Metric.F1] = calculate_f_score(precision, recall, 1.0)
    metrics[Metric.F2] = calculate_f_score(precision, recall, 2.0)
    metrics[Metric.FB] = calculate_f_score(precision, recall, beta)
    metrics[Metric.RMSD] = rmsd
    return metrics


def create_result(
    result_id: int,
    options,
    n: int,
    tp: int,
    fp: int,
    fn: int,
    time: int,
    beta: float,
    rmsd: float,
    text: Optional[str] = None,
) -> Result:
    return Result(
        id=result_id,
        options=options,
        n=n,
        tp=tp,
        fp=fp,
        fn=fn,
        time=time,
        metrics=compute_metrics(tp, fp, fn, rmsd, beta),
        text=text,
    )


def is_3d(reference: Sequence[Sequence[float]]) -> bool:
    """True when every reference point has a z coordinate of at least 1."""
    if len(reference) == 0:
        return False
    return all(len(p) > 2 and p[2] >= 1 for p in reference)


def distance_threshold(
    width: int, height: int, distance: float, absolute: bool
) -> float:
    """Match distance in pixels.

    Relative distances are a fraction of the smaller image dimension,
    rounded up.
    """
    if absolute:
        if distance < 1:
            logger.warning(
                "Absolute match distance %g is below 1 pixel", distance
            )
        return float(distance)
    return float(math.ceil(distance * min(width, height)))


def as_points(maxima: Sequence[Sequence[float]]) -> List[Point]:
    """Coerce pipeline output to (x, y, z) tuples."""
    points: List[Point] = []
    for m in maxima:
        values = tuple(float(v) for v in m)
        z = values[2] if len(values) > 2 else 0.0
        points.append((values[0], values[1], z))
    return points


class Scorer:
    """Score predicted maxima for one image.

    Args:
        reference: Reference (x, y, z) points.
        threshold: Match distance in pixels.
        beta: Beta of the configurable F-score.
        matcher: Point matcher, ``match_points`` by default.
    """

    def __init__(
        self,
        reference: Sequence[Sequence[float]],
        threshold: float,
        beta: float,
        matcher: Optional[Matcher] = None,
    ) -> None:
        self.reference = as_points(reference)
        self.threshold = threshold
        self.beta = beta
        self.is_3d = is_3d(self.reference)
        self.matcher = matcher or match_points

    def score(self, result_id: int, options, maxima, time: int) -> Result:
        predicted = as_points(maxima)
        match = self.matcher(self.reference, predicted, self.threshold, self.is_3d)
        return create_result(
            result_id,
            options,
            match.n,
            match.tp,
            match.fp,
            match.fn,
            time,
            self.beta,
            match.rmsd,
        )
