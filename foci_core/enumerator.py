#!/usr/bin/env python
#
# FindFoci Optimiser - Combination Enumerator
# © 2025 FindFoci Optimiser Authors
#

"""
Walk the parameter lattice and drive the staged maxima-detection pipeline.

Loop order, outer to inner::

    blur -> background entry -> statistics mode -> [init]
      -> background parameter -> search method -> search parameter -> [search]
      -> peak parameter -> [merge_peak]
      -> min size -> [merge_size]
      -> option flags -> [merge_final]
      -> sort method -> centre method -> centre parameter -> [results]

Every stage runs once per distinct combination of the values it depends
on. The init handle is cloned into a per-depth buffer before each search
and each merge_final, so work done deeper in the tree never leaks into a
sibling branch.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import numpy as np

from .exceptions import FociError, FociPipelineError, FociStepLimitError
from .options import Options
from .parameters import ParameterSpace
from .schema import OptimiserResult, Result, statistics_mode_to_flags
from .scoring import Scorer
from .stages.base import BaseMaximaPipeline

logger = logging.getLogger(__name__)

SEARCH_DEPTH = "search"
MERGE_DEPTH = "merge"


class StopWatch:
    """Nested stopwatch in nanoseconds.

    A child created with :meth:`create` starts from the parent's
    accumulated time, so a leaf reports the full cost of reaching it.
    """

    def __init__(self, base: int = 0) -> None:
        self.base = base
        self.elapsed = 0
        self._start = time.perf_counter_ns()

    def create(self) -> "StopWatch":
        return StopWatch(self.time)

    def stop(self) -> int:
        self.elapsed = time.perf_counter_ns() - self._start
        return self.time

    @property
    def time(self) -> int:
        return self.base + self.elapsed


class _StageAborted(Exception):
    def __init__(self, stage: str) -> None:
        super().__init__(stage)
        self.stage = stage


def iter_options(space: ParameterSpace) -> Iterator[Options]:
    """Yield every combination's options in enumeration order, without stages."""
    for blur in space.blur.values():
        for background_method, threshold_method in space.background_entries:
            for statistics_mode in space.statistics_modes_for(background_method):
                stats_flags = statistics_mode_to_flags(statistics_mode)
                for background_parameter in space.background_parameter_values(background_method):
                    for search_method in space.search_methods:
                        for search_parameter in space.search_parameter_values(search_method):
                            for peak_parameter in space.peak_parameter.values():
                                for min_size in space.min_size.values():
                                    for flags in space.option_flags:
                                        for sort_method in space.sort_methods.values():
                                            for centre_method in space.centre_methods.values():
                                                for centre_parameter in space.centre_parameter_values(
                                                    centre_method
                                                ):
                                                    yield Options(
                                                        blur=blur,
                                                        background_method=background_method,
                                                        background_parameter=background_parameter,
                                                        threshold_method=threshold_method,
                                                        search_method=search_method,
                                                        search_parameter=search_parameter,
                                                        max_peaks=space.max_peaks,
                                                        min_size=min_size,
                                                        peak_method=space.peak_method,
                                                        peak_parameter=peak_parameter,
                                                        sort_method=sort_method,
                                                        options=flags + stats_flags,
                                                        centre_method=centre_method,
                                                        centre_parameter=centre_parameter,
                                                    )


def count_steps(space: ParameterSpace, limit: Optional[int] = None) -> int:
    """Count the combinations of a space.

    With ``limit`` set, counting stops as soon as the count exceeds it.
    """
    leaf = len(space.sort_methods) * sum(
        len(space.centre_parameter_values(c)) for c in space.centre_methods.values()
    )
    per_statistics_mode = (
        len(space.peak_parameter) * len(space.min_size) * len(space.option_flags) * leaf
    )
    count = 0
    for _ in space.blur.values():
        for background_method, _threshold in space.background_entries:
            for _mode in space.statistics_modes_for(background_method):
                for _bg in space.background_parameter_values(background_method):
                    for search_method in space.search_methods:
                        count += len(space.search_parameter_values(search_method)) * per_statistics_mode
                        if limit is not None and count > limit:
                            return count
    return count


def check_step_limit(space: ParameterSpace, step_limit: int) -> int:
    """Return the combination count of ``space``.

    Raises:
        FociStepLimitError: If the count exceeds ``step_limit``.
    """
    combinations = count_steps(space, step_limit)
    if combinations > step_limit:
        raise FociStepLimitError(combinations, step_limit)
    return combinations


class Enumerator:
    """Run every combination of a parameter space on one image.

    Args:
        pipeline: Staged maxima-detection pipeline.
        space: Parameter space to enumerate.
        scorer: Scores the maxima of each combination.
        abort: Cancellation signal polled once per combination.
        tick: Called once per completed combination.
        id_for: Maps options to a stable result id; defaults to the
            enumeration index.
    """

    def __init__(
        self,
        pipeline: BaseMaximaPipeline,
        space: ParameterSpace,
        scorer: Scorer,
        *,
        abort: Optional[threading.Event] = None,
        tick: Optional[Callable[[], Any]] = None,
        id_for: Optional[Callable[[Options], int]] = None,
    ) -> None:
        self.pipeline = pipeline
        self.space = space
        self.scorer = scorer
        self.abort = abort or threading.Event()
        self.tick = tick
        self.id_for = id_for
        self._buffers: Dict[str, Any] = {SEARCH_DEPTH: None, MERGE_DEPTH: None}

    def _stage(self, stage: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            handle = func(*args)
        except FociError:
            raise
        except Exception as exc:
            raise FociPipelineError(
                f"Pipeline stage '{stage}' failed",
                stage=stage,
                original_error=exc,
            ) from exc
        if handle is None:
            raise _StageAborted(stage)
        return handle

    def _clone(self, depth: str, handle: Any) -> Any:
        buffer = self._stage("clone", self.pipeline.clone, handle, self._buffers[depth])
        self._buffers[depth] = buffer
        return buffer

    def run(
        self, image: np.ndarray, mask: Optional[np.ndarray] = None
    ) -> Optional[OptimiserResult]:
        """Enumerate and score every combination.

        Returns None when cancelled or when a stage produces no result.

        Raises:
            FociPipelineError: If a stage raises.
        """
        self._buffers = {SEARCH_DEPTH: None, MERGE_DEPTH: None}
        watch = StopWatch()
        results: List[Result] = []
        try:
            for blur in self.space.blur.values():
                sw0 = StopWatch()
                blurred = self._stage("blur", self.pipeline.blur, image, blur)
                sw0.stop()
                if not self._run_blur(image, blurred, mask, blur, sw0, results):
                    return None
        except _StageAborted as exc:
            logger.debug("Stage %s produced no result; abandoning image", exc.stage)
            return None
        watch.stop()
        return OptimiserResult(results, elapsed_time=watch.time)

    def _run_blur(
        self,
        image: np.ndarray,
        blurred: np.ndarray,
        mask: Optional[np.ndarray],
        blur: float,
        sw0: StopWatch,
        results: List[Result],
    ) -> bool:
        space = self.space
        pipeline = self.pipeline
        for background_method, threshold_method in space.background_entries:
            for statistics_mode in space.statistics_modes_for(background_method):
                stats_flags = statistics_mode_to_flags(statistics_mode)
                sw1 = sw0.create()
                init = self._stage(
                    "init",
                    pipeline.init,
                    image,
                    blurred,
                    mask,
                    background_method,
                    threshold_method,
                    stats_flags,
                )
                sw1.stop()

                for background_parameter in space.background_parameter_values(background_method):
                    for search_method in space.search_methods:
                        for search_parameter in space.search_parameter_values(search_method):
                            search_init = self._clone(SEARCH_DEPTH, init)
                            sw2 = sw1.create()
                            search = self._stage(
                                "search",
                                pipeline.search,
                                search_init,
                                background_method,
                                background_parameter,
                                search_method,
                                search_parameter,
                            )
                            sw2.stop()

                            for peak_parameter in space.peak_parameter.values():
                                sw3 = sw2.create()
                                merge_peak = self._stage(
                                    "merge_peak",
                                    pipeline.merge_peak,
                                    search_init,
                                    search,
                                    space.peak_method,
                                    peak_parameter,
                                )
                                sw3.stop()

                                for min_size in space.min_size.values():
                                    sw4 = sw3.create()
                                    merge_size = self._stage(
                                        "merge_size",
                                        pipeline.merge_size,
                                        search_init,
                                        merge_peak,
                                        min_size,
                                    )
                                    sw4.stop()

                                    for flags in space.option_flags:
                                        merge_init = self._clone(MERGE_DEPTH, search_init)
                                        sw5 = sw4.create()
                                        merge = self._stage(
                                            "merge_final",
                                            pipeline.merge_final,
                                            merge_init,
                                            merge_size,
                                            min_size,
                                            flags,
                                            blur,
                                        )
                                        sw5.stop()

                                        for sort_method in space.sort_methods.values():
                                            for centre_method in space.centre_methods.values():
                                                for centre_parameter in space.centre_parameter_values(
                                                    centre_method
                                                ):
                                                    if self.abort.is_set():
                                                        logger.debug("Enumeration cancelled")
                                                        return False
                                                    sw6 = sw5.create()
                                                    maxima = self._stage(
                                                        "results",
                                                        pipeline.results,
                                                        merge_init,
                                                        merge,
                                                        space.max_peaks,
                                                        sort_method,
                                                        centre_method,
                                                        centre_parameter,
                                                    )
                                                    elapsed = sw6.stop()
                                                    options = Options(
                                                        blur=blur,
                                                        background_method=background_method,
                                                        background_parameter=background_parameter,
                                                        threshold_method=threshold_method,
                                                        search_method=search_method,
                                                        search_parameter=search_parameter,
                                                        max_peaks=space.max_peaks,
                                                        min_size=min_size,
                                                        peak_method=space.peak_method,
                                                        peak_parameter=peak_parameter,
                                                        sort_method=sort_method,
                                                        options=flags + stats_flags,
                                                        centre_method=centre_method,
                                                        centre_parameter=centre_parameter,
                                                    )
                                                    results.append(
                                                        self.scorer.score(
                                                            self._result_id(options, len(results)),
                                                            options,
                                                            maxima,
                                                            elapsed,
                                                        )
                                                    )
                                                    if self.tick is not None:
                                                        self.tick()
        return True

    def _result_id(self, options: Options, index: int) -> int:
        if self.id_for is None:
            return index + 1
        return self.id_for(options)
