#!/usr/bin/env python
#
# FindFoci Optimiser - Point Matching
# © 2025 FindFoci Optimiser Authors
#

"""
Greedy closest-pair matching between reference and predicted points.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class MatchResult:
    """Counts of a point match.

    ``n`` is the number of predicted points; ``rmsd`` is the root mean
    square distance over the true positives (0 when there are none).
    """

    n: int
    tp: int
    fp: int
    fn: int
    rmsd: float


def _as_array(points: Sequence[Sequence[float]], is_3d: bool) -> np.ndarray:
    columns = 3 if is_3d else 2
    if len(points) == 0:
        return np.zeros((0, columns), dtype=np.float64)
    return np.asarray([tuple(p)[:columns] for p in points], dtype=np.float64)


def match_points(
    reference: Sequence[Sequence[float]],
    predicted: Sequence[Sequence[float]],
    threshold: float,
    is_3d: bool = False,
) -> MatchResult:
    """Match predicted points to reference points.

    The globally closest unassigned pair is matched first and matching
    stops at the first pair whose distance is not below ``threshold``.
    The z coordinate is only used when ``is_3d`` is set.
    """
    actual = _as_array(reference, is_3d)
    found = _as_array(predicted, is_3d)
    n = len(found)
    if n == 0 or len(actual) == 0:
        return MatchResult(n=n, tp=0, fp=n, fn=len(actual), rmsd=0.0)

    deltas = actual[:, None, :] - found[None, :, :]
    d2 = np.einsum("ijk,ijk->ij", deltas, deltas)
    limit = threshold * threshold
    order = np.argsort(d2, axis=None, kind="stable")

    used_actual = np.zeros(len(actual), dtype=bool)
    used_found = np.zeros(n, dtype=bool)
    tp = 0
    sum_d2 = 0.0
    for flat_index in order:
        i, j = divmod(int(flat_index), n)
        distance2 = d2[i, j]
        if distance2 >= limit:
            break
        if used_actual[i] or used_found[j]:
            continue
        used_actual[i] = True
        used_found[j] = True
        tp += 1
        sum_d2 += float(distance2)
        if tp == len(actual) or tp == n:
            break

    rmsd = math.sqrt(sum_d2 / tp) if tp else 0.0
    return MatchResult(n=n, tp=tp, fp=n - tp, fn=len(actual) - tp, rmsd=rmsd)
