#!/usr/bin/env python
#
# FindFoci Optimiser - Simple Maxima Pipeline
# © 2025 FindFoci Optimiser Authors
#

"""Reference maxima-detection pipeline built on numpy and OpenCV."""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..exceptions import FociPipelineError
from ..schema import (
    BACKGROUND_ABSOLUTE,
    BACKGROUND_AUTO_THRESHOLD,
    BACKGROUND_MEAN,
    BACKGROUND_MIN_ROI,
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    CENTRE_GAUSSIAN_ORIGINAL,
    CENTRE_GAUSSIAN_SEARCH,
    CENTRE_MAX_VALUE_ORIGINAL,
    CENTRE_MAX_VALUE_SEARCH,
    CENTRE_OF_MASS_ORIGINAL,
    CENTRE_OF_MASS_SEARCH,
    OPTION_CONTIGUOUS_ABOVE_SADDLE,
    OPTION_MINIMUM_ABOVE_SADDLE,
    OPTION_STATS_INSIDE,
    OPTION_STATS_OUTSIDE,
    PEAK_ABSOLUTE,
    PEAK_RELATIVE,
    SEARCH_ABOVE_BACKGROUND,
    SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND,
)
from .base import BaseMaximaPipeline, Point

logger = logging.getLogger(__name__)

# Sort methods whose smallest value comes first (X, Y, Z, Peak ID, XYZ)
_ASCENDING_SORTS = {6, 7, 8, 14, 15}
_DEFAULT_CENTRE_RADIUS = 2
_UNBOUNDED = 1e30


@dataclass
class ImageStatistics:
    mean: float
    std_dev: float
    minimum: float
    mask_minimum: float
    auto_threshold: float


@dataclass
class InitHandle:
    """Search image, statistics and the candidate maxima of one image.

    ``maxima`` rows are (y, x, value) sorted by descending value;
    ``saddles`` and ``parents`` describe where each maximum joins a higher
    one (parent -1 for the highest maximum of a component). ``background``
    is written by :meth:`SimpleMaximaPipeline.search`.
    """

    image: np.ndarray
    original: np.ndarray
    mask: Optional[np.ndarray]
    statistics: ImageStatistics
    maxima: np.ndarray
    saddles: np.ndarray
    parents: np.ndarray
    background: float = 0.0


@dataclass
class PeakHandle:
    """Per-maximum state shared by the search and merge stages."""

    background: float
    cutoffs: np.ndarray
    active: np.ndarray
    sizes: np.ndarray
    totals: np.ndarray
    sizes_above_saddle: Optional[np.ndarray] = None

    def copy_with(self, **changes) -> "PeakHandle":
        return dataclasses.replace(self, **changes)


class SimpleMaximaPipeline(BaseMaximaPipeline):
    """Compact FindFoci-style maxima finder for 2-D images.

    Saddles are computed once per init with a union-find sweep from the
    brightest pixel down to the image mean; maxima that would only join
    below the mean report the mean as their saddle. Gaussian centre
    methods fall back to a centre of mass with radius 2.
    """

    plugin_name: str = "simple"
    name: str = "SimpleMaximaPipeline"
    version: str = "1.0.0"

    def clone(self, handle: InitHandle, into: Optional[InitHandle] = None) -> InitHandle:
        # Arrays are never written after init; only the scalar background changes.
        return dataclasses.replace(handle)

    def init(self, image, blurred, mask, background_method, threshold_method, statistics_mode):
        original = np.asarray(image, dtype=np.float32)
        search_image = np.asarray(blurred, dtype=np.float32)
        if search_image.ndim != 2:
            raise FociPipelineError(
                "SimpleMaximaPipeline supports 2-D images only",
                stage="init",
                context={"shape": search_image.shape},
            )
        mask_bool = None
        if mask is not None:
            mask_bool = np.asarray(mask) > 0
            if mask_bool.shape != search_image.shape:
                logger.warning(
                    "Ignoring mask with shape %s for image shape %s",
                    mask_bool.shape,
                    search_image.shape,
                )
                mask_bool = None

        statistics = _statistics(search_image, mask_bool, statistics_mode, threshold_method)
        maxima = _find_maxima(search_image, mask_bool)
        saddles, parents = _compute_saddles(search_image, maxima, statistics.mean)
        keep = saddles < maxima[:, 2]
        if not np.all(keep):
            maxima, saddles, parents = _drop_plateau_duplicates(maxima, saddles, parents, keep)
        logger.debug(
            "init: %d maxima, mean=%.3f sd=%.3f", len(maxima), statistics.mean, statistics.std_dev
        )
        return InitHandle(search_image, original, mask_bool, statistics, maxima, saddles, parents)

    def search(self, init, background_method, background_parameter, search_method, search_parameter):
        background = _background_level(init.statistics, background_method, background_parameter)
        init.background = background
        values = init.maxima[:, 2]
        if search_method == SEARCH_ABOVE_BACKGROUND:
            cutoffs = np.full(len(values), background, dtype=np.float64)
        elif search_method == SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND:
            cutoffs = background + search_parameter * (values - background)
        else:
            cutoffs = background + 0.5 * (values - background)
        active = values > background

        sizes = np.zeros(len(values))
        totals = np.zeros(len(values))
        for k in np.flatnonzero(active):
            region = _flood(init.image, init.maxima[k], cutoffs[k], connectivity=8)
            sizes[k] = region.sum()
            totals[k] = float(init.image[region].sum())
        logger.debug("search: background=%.3f, %d maxima above", background, int(active.sum()))
        return PeakHandle(background, cutoffs, active, sizes, totals)

    def merge_peak(self, init, search, peak_method, peak_parameter):
        values = init.maxima[:, 2]
        background = search.background
        height = values - np.maximum(init.saddles, background)
        if peak_method == PEAK_ABSOLUTE:
            required = np.full(len(values), peak_parameter)
        elif peak_method == PEAK_RELATIVE:
            required = peak_parameter * values
        else:
            required = peak_parameter * (values - background)
        keep = search.active & ((height >= required) | (init.parents < 0))
        return _absorb(init, search, keep)

    def merge_size(self, init, merge, min_size):
        return _absorb(init, merge, merge.active & (merge.sizes >= min_size))

    def merge_final(self, init, merge, min_size, options, blur):
        if not options & OPTION_MINIMUM_ABOVE_SADDLE:
            return merge.copy_with()
        connectivity = 4 if options & OPTION_CONTIGUOUS_ABOVE_SADDLE else 8
        above = np.zeros(len(merge.sizes))
        for k in np.flatnonzero(merge.active):
            level = max(float(init.saddles[k]), float(merge.cutoffs[k]))
            above[k] = _flood(init.image, init.maxima[k], level, connectivity).sum()
        handle = _absorb(init, merge, merge.active & (above >= min_size))
        handle.sizes_above_saddle = above
        return handle

    def results(self, init, merge, max_peaks, sort_method, centre_method, centre_parameter):
        indices = np.flatnonzero(merge.active)
        if len(indices) == 0:
            return []
        keys = _sort_keys(init, merge, indices, sort_method)
        order = np.argsort(keys, kind="stable")
        if sort_method not in _ASCENDING_SORTS:
            order = order[::-1]
        chosen = indices[order][:max_peaks]
        return [
            _centre(init, merge, k, centre_method, centre_parameter) for k in chosen
        ]


def _statistics(image, mask, statistics_mode, threshold_method) -> ImageStatistics:
    region = image
    if mask is not None:
        if statistics_mode & OPTION_STATS_INSIDE and not statistics_mode & OPTION_STATS_OUTSIDE:
            region = image[mask]
        elif statistics_mode & OPTION_STATS_OUTSIDE and not statistics_mode & OPTION_STATS_INSIDE:
            region = image[~mask]
    if region.size == 0:
        region = image
    mask_minimum = float(image[mask].min()) if mask is not None and mask.any() else float(image.min())
    return ImageStatistics(
        mean=float(region.mean()),
        std_dev=float(region.std()),
        minimum=float(region.min()),
        mask_minimum=mask_minimum,
        auto_threshold=_auto_threshold(region, threshold_method),
    )


def _auto_threshold(values: np.ndarray, method: str) -> float:
    """Auto-threshold level using OpenCV (Otsu or Triangle; others use Otsu)."""
    low = float(values.min())
    high = float(values.max())
    if high <= low:
        return low
    scaled = ((values.astype(np.float64) - low) * (255.0 / (high - low))).astype(np.uint8)
    flag = cv2.THRESH_TRIANGLE if method == "Triangle" else cv2.THRESH_OTSU
    if method not in ("Otsu", "Triangle", ""):
        logger.debug("Auto threshold %s not available, using Otsu", method)
    level, _ = cv2.threshold(scaled.reshape(-1, 1), 0, 255, cv2.THRESH_BINARY | flag)
    return low + level * (high - low) / 255.0


def _background_level(statistics: ImageStatistics, method: int, parameter: float) -> float:
    if method == BACKGROUND_ABSOLUTE:
        return float(parameter)
    if method == BACKGROUND_MEAN:
        return statistics.mean
    if method == BACKGROUND_STD_DEV_ABOVE_MEAN:
        return statistics.mean + parameter * statistics.std_dev
    if method == BACKGROUND_AUTO_THRESHOLD:
        return statistics.auto_threshold
    if method == BACKGROUND_MIN_ROI:
        return statistics.mask_minimum
    return statistics.minimum


def _find_maxima(image: np.ndarray, mask: Optional[np.ndarray]) -> np.ndarray:
    dilated = cv2.dilate(image, np.ones((3, 3), np.uint8))
    candidates = image >= dilated
    if mask is not None:
        candidates &= mask
    ys, xs = np.nonzero(candidates)
    values = image[ys, xs].astype(np.float64)
    order = np.argsort(-values, kind="stable")
    return np.column_stack([ys[order], xs[order], values[order]]).astype(np.float64)


def _compute_saddles(
    image: np.ndarray, maxima: np.ndarray, floor: float
) -> Tuple[np.ndarray, np.ndarray]:
    height, width = image.shape
    flat = image.ravel()
    count = len(maxima)
    saddles = np.full(count, floor, dtype=np.float64)
    parents = np.full(count, -1, dtype=np.int64)
    if count == 0:
        return saddles, parents

    peak_at: Dict[int, int] = {
        int(y) * width + int(x): k for k, (y, x, _) in enumerate(maxima)
    }
    union: Dict[int, int] = {}
    peak_of: Dict[int, int] = {}

    def find(p: int) -> int:
        root = p
        while union[root] != root:
            root = union[root]
        while union[p] != root:
            union[p], p = root, union[p]
        return root

    above = np.flatnonzero(flat >= floor)
    for p in above[np.argsort(-flat[above], kind="stable")]:
        p = int(p)
        union[p] = p
        y, x = divmod(p, width)
        roots = set()
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                ny, nx = y + dy, x + dx
                if (dy or dx) and 0 <= ny < height and 0 <= nx < width:
                    q = ny * width + nx
                    if q in union:
                        roots.add(find(q))
        own = peak_at.get(p, -1)
        peaks = {peak_of[r] for r in roots if peak_of.get(r, -1) >= 0}
        if own >= 0:
            peaks.add(own)
        # Maxima are sorted by value so the lowest index is the highest peak
        best = min(peaks) if peaks else -1
        level = float(flat[p])
        for k in peaks:
            if k != best and parents[k] < 0:
                saddles[k] = level
                parents[k] = best
        for r in roots:
            union[r] = p
        peak_of[p] = best
    return saddles, parents


def _drop_plateau_duplicates(maxima, saddles, parents, keep):
    remap = np.cumsum(keep) - 1
    new_parents = parents[keep].copy()
    for i, parent in enumerate(new_parents):
        while parent >= 0 and not keep[parent]:
            parent = parents[parent]
        new_parents[i] = remap[parent] if parent >= 0 else -1
    return maxima[keep], saddles[keep], new_parents


def _flood(image: np.ndarray, maximum: np.ndarray, level: float, connectivity: int) -> np.ndarray:
    """Boolean region connected to ``maximum`` with values >= ``level``."""
    y, x, value = int(maximum[0]), int(maximum[1]), float(maximum[2])
    fill_mask = np.zeros((image.shape[0] + 2, image.shape[1] + 2), np.uint8)
    flags = connectivity | cv2.FLOODFILL_FIXED_RANGE | cv2.FLOODFILL_MASK_ONLY | (1 << 8)
    cv2.floodFill(
        image,
        fill_mask,
        (x, y),
        0,
        loDiff=max(value - level, 0.0),
        upDiff=_UNBOUNDED,
        flags=flags,
    )
    return fill_mask[1:-1, 1:-1] > 0


def _absorb(init: InitHandle, handle: PeakHandle, keep: np.ndarray) -> PeakHandle:
    """Fold the size and intensity of dropped maxima into their nearest kept parent."""
    sizes = handle.sizes.copy()
    totals = handle.totals.copy()
    for k in np.flatnonzero(handle.active & ~keep)[::-1]:
        parent = init.parents[k]
        while parent >= 0 and not keep[parent]:
            parent = init.parents[parent]
        if parent >= 0:
            sizes[parent] += sizes[k]
            totals[parent] += totals[k]
    return handle.copy_with(active=keep.copy(), sizes=sizes, totals=totals)


def _sort_keys(init: InitHandle, merge: PeakHandle, indices: np.ndarray, sort_method: int) -> np.ndarray:
    ys = init.maxima[indices, 0]
    xs = init.maxima[indices, 1]
    values = init.maxima[indices, 2]
    sizes = np.maximum(merge.sizes[indices], 1)
    totals = merge.totals[indices]
    saddles = np.maximum(init.saddles[indices], merge.background)
    above = merge.sizes_above_saddle[indices] if merge.sizes_above_saddle is not None else sizes
    minimum = init.statistics.minimum
    table: List[Sequence[float]] = [
        sizes,
        totals,
        values,
        totals / sizes,
        totals - merge.background * sizes,
        totals / sizes - merge.background,
        xs,
        ys,
        np.zeros(len(indices)),
        saddles,
        above,
        totals - saddles * sizes,
        values - saddles,
        (values - saddles) / np.maximum(values - merge.background, 1e-12),
        indices.astype(np.float64),
        ys * init.image.shape[1] + xs,
        totals - minimum * sizes,
        totals / sizes - minimum,
    ]
    return np.asarray(table[sort_method], dtype=np.float64)


def _centre(init: InitHandle, merge: PeakHandle, k: int, method: int, parameter: float) -> Point:
    y, x = int(init.maxima[k, 0]), int(init.maxima[k, 1])
    if method == CENTRE_MAX_VALUE_SEARCH:
        return (float(x), float(y), 0.0)
    if method == CENTRE_MAX_VALUE_ORIGINAL:
        window, oy, ox = _window(init.original, y, x, 1)
        dy, dx = np.unravel_index(int(np.argmax(window)), window.shape)
        return (float(ox + dx), float(oy + dy), 0.0)

    radius = _DEFAULT_CENTRE_RADIUS
    source = init.original
    if method == CENTRE_OF_MASS_SEARCH:
        radius = max(int(parameter), 0)
        source = init.image
    elif method == CENTRE_GAUSSIAN_SEARCH:
        source = init.image
    elif method not in (CENTRE_OF_MASS_ORIGINAL, CENTRE_GAUSSIAN_ORIGINAL):
        return (float(x), float(y), 0.0)
    window, oy, ox = _window(source, y, x, radius)
    weights = np.clip(window.astype(np.float64) - merge.background, 0, None)
    total = weights.sum()
    if total <= 0:
        return (float(x), float(y), 0.0)
    gy, gx = np.mgrid[0 : window.shape[0], 0 : window.shape[1]]
    return (
        float(ox + (gx * weights).sum() / total),
        float(oy + (gy * weights).sum() / total),
        0.0,
    )


def _window(image: np.ndarray, y: int, x: int, radius: int) -> Tuple[np.ndarray, int, int]:
    y0, x0 = max(y - radius, 0), max(x - radius, 0)
    return image[y0 : y + radius + 1, x0 : x + radius + 1], y0, x0
