#!/usr/bin/env python
#
# FindFoci Optimiser - Optimisation Orchestrator
# © 2025 FindFoci Optimiser Authors
#

"""
Single-image and batch optimisation runs.

``FociOptimiser.run_single`` sweeps one image synchronously.
``FociOptimiser.run_batch`` processes a directory with one task per image
on a thread pool, reusing cached results files where they match the
parameter space, and combines the per-image results into ``all.results.xls``.
"""

import dataclasses
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .aggregate import combine_results
from .enumerator import Enumerator, check_step_limit, iter_options
from .exceptions import (
    FociAggregationError,
    FociConfigError,
    FociError,
    FociLoadError,
)
from .image_io import (
    find_mask,
    find_points,
    list_input_files,
    load_image,
    points_in_mask,
    short_title,
)
from .normalize import get_score
from .outputs.progress import ConcurrentCounter, Counter, ProgressCallback
from .outputs.results_file import ParameterIdMap, load_results, results_path, save_results
from .parameters import ParameterSpace, build_parameter_space
from .ranking import sort_results
from .schema import (
    COMBINED_RESULTS_NAME,
    RESULTS_SUFFIX,
    SCORE_RAW,
    Metric,
    OptimiserConfig,
    OptimiserResult,
    Result,
    background_method_has_parameter,
    get_sort_index,
    search_method_has_parameter,
)
from .scoring import Scorer, distance_threshold
from .stages.base import BaseMaximaPipeline
from .stages.registry import PipelineRegistry

# Module-level logger
logger = logging.getLogger(__name__)

LogRecord = Tuple[int, str]


@dataclass
class WorkerOutcome:
    """What one batch task produced.

    Attributes:
        name: Input file name.
        result: Results in id order, or None when the image gave none.
        reused: True when the results came from a cached file.
        messages: Log messages buffered by the task, replayed in input
            order once the batch has finished.
        error: Error that stopped the task, if any.
    """

    name: str
    result: Optional[OptimiserResult] = None
    reused: bool = False
    messages: List[LogRecord] = field(default_factory=list)
    error: Optional[FociError] = None

    def log(self, level: int, message: str, *args: Any) -> None:
        self.messages.append((level, message % args if args else message))


@dataclass
class BatchResult:
    """Per-image and combined results of a batch run."""

    outcomes: List[WorkerOutcome]
    combined: Optional[List[Result]] = None
    cancelled: bool = False
    combinations: int = 0

    @property
    def images(self) -> Dict[str, OptimiserResult]:
        return {o.name: o.result for o in self.outcomes if o.result is not None}


def check_optimisation_space(
    result: OptimiserResult,
    title: str,
    space: ParameterSpace,
    combinations: int,
    sort_method: int,
) -> List[LogRecord]:
    """Report the run time and any best parameter sitting at a range limit."""
    messages: List[LogRecord] = []
    if not result.results:
        return messages
    best = result.results[0]
    options = best.options
    if options is None:
        return messages

    if result.elapsed_time:
        seconds = result.elapsed_time / 1e9
        messages.append(
            (
                logging.INFO,
                "%s Optimisation time = %.3f sec (%.3f ms / combination). Speed up = %.3fx"
                % (
                    title,
                    seconds,
                    result.elapsed_time / 1e6 / max(combinations, 1),
                    result.speed_up,
                ),
            )
        )

    if best.metrics[Metric.F1] >= 1.0:
        return messages

    limits: List[str] = []
    background = space.background_parameter
    if background_method_has_parameter(options.background_method):
        if options.background_parameter == background.minimum:
            limits.append(f"- Background parameter @ lower limit ({options.background_parameter:g})")
        elif options.background_parameter + background.interval > background.maximum:
            limits.append(f"- Background parameter @ upper limit ({options.background_parameter:g})")

    search = space.search_parameter
    if search_method_has_parameter(options.search_method):
        if options.search_parameter == search.minimum and search.minimum > 0:
            limits.append(f"- Search parameter @ lower limit ({options.search_parameter:g})")
        elif options.search_parameter + search.interval > search.maximum and search.maximum < 1:
            limits.append(f"- Search parameter @ upper limit ({options.search_parameter:g})")

    min_size = space.min_size
    if options.min_size == min_size.minimum and min_size.minimum > 1:
        limits.append(f"- Min Size @ lower limit ({options.min_size})")
    elif options.min_size + min_size.interval > min_size.maximum:
        limits.append(f"- Min Size @ upper limit ({options.min_size})")

    peak = space.peak_parameter
    if options.peak_parameter == peak.minimum and peak.minimum > 0:
        limits.append(f"- Peak parameter @ lower limit ({options.peak_parameter:g})")
    elif options.peak_parameter + peak.interval > peak.maximum and peak.maximum < 1:
        limits.append(f"- Peak parameter @ upper limit ({options.peak_parameter:g})")

    blurs = space.blur.values()
    if options.blur == blurs[0] and blurs[0] > 0:
        limits.append(f"- Gaussian blur @ lower limit ({options.blur:g})")
    elif options.blur == blurs[-1]:
        limits.append(f"- Gaussian blur @ upper limit ({options.blur:g})")

    if options.max_peaks == best.n:
        limits.append(f"- Total peaks == Maximum Peaks ({options.max_peaks})")

    if limits:
        value = best.metrics[get_sort_index(sort_method)]
        lines = [
            f"Optimal result ({value:.4f}) for {title} obtained at the following limits:",
            *limits,
            "You may want to increase the optimisation space.",
        ]
        messages.append((logging.WARNING, "\n".join(lines)))
    return messages


def _copy_results(results: Sequence[Result]) -> List[Result]:
    return [dataclasses.replace(r, metrics=list(r.metrics)) for r in results]


class FociOptimiser:
    """Drive a maxima-detection pipeline over a parameter space.

    Args:
        config: Optimiser settings.
        pipeline: Pipeline instance; created from ``config.pipeline`` via
            the registry when omitted.
        progress: Optional ``callback(done, total)`` for progress updates.

    Raises:
        FociConfigError: If the parameter space or pipeline is invalid.

    Example:
        >>> optimiser = FociOptimiser(OptimiserConfig.from_preset("testing"))
        >>> batch = optimiser.run_batch("images/")
        >>> batch.combined[0].parameters
    """

    def __init__(
        self,
        config: OptimiserConfig,
        pipeline: Optional[BaseMaximaPipeline] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config
        self.space = build_parameter_space(config)
        self.pipeline = pipeline or PipelineRegistry.create(
            config.pipeline, config.pipeline_config
        )
        self.progress = progress
        self.abort = threading.Event()
        self.id_map = ParameterIdMap()

    def cancel(self) -> None:
        """Request cooperative cancellation of running sweeps."""
        self.abort.set()

    def check_step_limit(self, space: Optional[ParameterSpace] = None) -> int:
        """Return the combination count of ``space`` (default: the full space).

        Raises:
            FociStepLimitError: If the count exceeds ``config.step_limit``.
        """
        return check_step_limit(space or self.space, self.config.step_limit)

    def _register_ids(self, space: ParameterSpace) -> None:
        # Ids follow enumeration order whichever image finishes first
        for options in iter_options(space):
            self.id_map.register(options)

    def _scorer(self, image: np.ndarray, points: Sequence[Sequence[float]]) -> Scorer:
        height, width = image.shape[-2:]
        threshold = distance_threshold(
            width,
            height,
            self.config.match_search_distance,
            self.config.absolute_match_distance,
        )
        return Scorer(points, threshold, self.config.beta)

    def _sweep(
        self,
        image: np.ndarray,
        mask: Optional[np.ndarray],
        points: Sequence[Sequence[float]],
        space: ParameterSpace,
        counter: Counter,
    ) -> Optional[OptimiserResult]:
        enumerator = Enumerator(
            self.pipeline,
            space,
            self._scorer(image, points),
            abort=self.abort,
            tick=counter.tick,
            id_for=self.id_map.register,
        )
        result = enumerator.run(image, mask)
        if result is not None:
            sort_results(result.results, self.config.result_sort_method_index)
            get_score(result.results, self.config.result_sort_method_index, SCORE_RAW)
        return result

    # ------------------------------------------------------------------
    # Single image
    # ------------------------------------------------------------------
    def run_single(
        self,
        image: np.ndarray,
        reference_points: Sequence[Sequence[float]],
        mask: Optional[np.ndarray] = None,
        *,
        title: str = "image",
        output_path: Optional[str] = None,
    ) -> Optional[OptimiserResult]:
        """Optimise one image.

        Without a mask only the ``Both`` statistics mode is enumerated.
        Results are sorted by the configured metric with a raw score.
        Returns None when cancelled or when the pipeline gives no result.

        Raises:
            FociConfigError: If no reference point lies inside the mask, or
                the space exceeds the step limit.
            FociPipelineError: If a pipeline stage raises.
        """
        space = self.space if mask is not None else self.space.without_statistics_modes()
        combinations = self.check_step_limit(space)
        points = points_in_mask(reference_points, mask)
        if not points:
            raise FociConfigError(
                "No reference points fall inside the mask image",
                context={"title": title},
            )
        self._register_ids(space)

        logger.info("%s: optimising %d combinations", title, combinations)
        counter = Counter(combinations, self.progress)
        result = self._sweep(image, mask, points, space, counter)
        if result is None:
            logger.info("%s: no optimisation results", title)
            return None

        if result.results:
            best = result.results[0]
            logger.info(
                "Top result = %.4f",
                best.metrics[get_sort_index(self.config.result_sort_method_index)],
            )
            if output_path:
                save_results(output_path, result.results, settings=self.config.to_dict())
        for level, message in check_optimisation_space(
            result, title, space, combinations, self.config.result_sort_method_index
        ):
            logger.log(level, "%s", message)
        return result

    def run_single_file(
        self, image_path: str, output_directory: Optional[str] = None
    ) -> Optional[OptimiserResult]:
        """Load an image, its mask and its points file, then run :meth:`run_single`.

        Raises:
            FociLoadError: If the image or its points file cannot be read.
        """
        image = load_image(image_path)
        directory, name = os.path.split(image_path)
        mask = None
        mask_path = find_mask(directory, name, self.config.mask_directory)
        if mask_path:
            mask = load_image(mask_path)
            logger.info("Using mask %s", mask_path)
        points = find_points(image_path)
        if points is None:
            raise FociLoadError(
                "Image must have a corresponding points file (.csv, .xyz or .txt)",
                filepath=image_path,
            )
        title = short_title(name)
        output_directory = output_directory or self.config.output_directory
        output_path = results_path(output_directory, title) if output_directory else None
        return self.run_single(
            image, points, mask, title=title, output_path=output_path
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    def run_batch(
        self,
        input_directory: str,
        output_directory: Optional[str] = None,
    ) -> BatchResult:
        """Optimise every image of a directory and combine the results.

        Raises:
            FociConfigError: If there are no input files or the space
                exceeds the step limit.
            FociAggregationError: If no image produced results or the
                per-image results do not align.
        """
        output_directory = output_directory or self.config.output_directory or input_directory
        names = list_input_files(input_directory)
        if not names:
            raise FociConfigError("No input files found", filepath=input_directory)

        combinations = self.check_step_limit()
        self._register_ids(self.space)
        counter = ConcurrentCounter(combinations * len(names), self.progress)
        workers = max(1, min(self.config.num_workers, len(names)))
        logger.info(
            "Optimising %d files (%d combinations each) with %d workers",
            len(names),
            combinations,
            workers,
        )

        start = time.perf_counter()
        outcomes: Dict[str, WorkerOutcome] = {}
        executor = ThreadPoolExecutor(max_workers=workers)
        wait_for_tasks = True
        futures = {}
        try:
            for name in names:
                future = executor.submit(
                    self._process_image,
                    name,
                    input_directory,
                    output_directory,
                    combinations,
                    counter,
                )
                futures[future] = name
            for future in as_completed(futures):
                outcome = future.result()
                outcomes[outcome.name] = outcome
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling remaining images")
            self.abort.set()
            wait_for_tasks = False
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=wait_for_tasks, cancel_futures=not wait_for_tasks)

        ordered = [outcomes[name] for name in names if name in outcomes]
        for outcome in ordered:
            for level, message in outcome.messages:
                logger.log(level, "%s", message)
        logger.info("Batch finished in %.3f sec", time.perf_counter() - start)

        batch = BatchResult(ordered, combinations=combinations)
        if self.abort.is_set():
            logger.info("Optimisation cancelled")
            batch.cancelled = True
            return batch

        all_results = [
            _copy_results(o.result.results) for o in ordered if o.result is not None
        ]
        if not all_results:
            raise FociAggregationError("No optimisation runs produced results")

        batch.combined = combine_results(
            all_results,
            self.config.result_sort_method_index,
            self.config.scoring_mode_index,
        )
        save_results(
            os.path.join(output_directory, COMBINED_RESULTS_NAME + RESULTS_SUFFIX),
            batch.combined,
            settings=self.config.to_dict(),
        )
        return batch

    def _process_image(
        self,
        name: str,
        directory: str,
        output_directory: str,
        combinations: int,
        counter: ConcurrentCounter,
    ) -> WorkerOutcome:
        outcome = WorkerOutcome(name)
        if self.abort.is_set():
            return outcome

        path = os.path.join(directory, name)
        try:
            image = load_image(path)
        except FociLoadError:
            outcome.log(logging.INFO, "Skipping file (it may not be an image): %s", path)
            counter.tick(combinations)
            return outcome

        mask = None
        mask_path = find_mask(directory, name, self.config.mask_directory)
        if mask_path:
            try:
                mask = load_image(mask_path)
            except FociLoadError as exc:
                outcome.log(logging.WARNING, "%s", exc)
                mask_path = None

        title = short_title(name)
        result_file = results_path(output_directory, title)
        if self.config.reuse_results:
            loaded = load_results(
                result_file,
                combinations,
                self.id_map,
                self.config.beta,
                self.config.result_sort_method_index,
            )
            if loaded is not None and len(loaded) == combinations:
                outcome.log(logging.INFO, "Re-using results: %s", result_file)
                counter.tick(combinations)
                outcome.result = OptimiserResult(loaded, elapsed_time=0)
                outcome.reused = True

        if outcome.result is None:
            result = self._optimise_image(outcome, path, image, mask, combinations, counter)
            if result is None:
                return outcome
            save_results(
                result_file,
                result.results,
                settings=self.config.to_dict(),
                image_path=path,
                mask_path=mask_path,
            )
            outcome.result = result

        outcome.messages.extend(
            check_optimisation_space(
                outcome.result,
                title,
                self.space,
                combinations,
                self.config.result_sort_method_index,
            )
        )
        outcome.result.results.sort(key=lambda r: r.id)
        return outcome

    def _optimise_image(
        self,
        outcome: WorkerOutcome,
        path: str,
        image: np.ndarray,
        mask: Optional[np.ndarray],
        combinations: int,
        counter: ConcurrentCounter,
    ) -> Optional[OptimiserResult]:
        points = find_points(path)
        if points is None:
            outcome.log(logging.WARNING, "No points file for %s", path)
            counter.tick(combinations)
            return None
        points = points_in_mask(points, mask)
        if not points:
            outcome.log(logging.WARNING, "No reference points fall inside the mask for %s", path)
            counter.tick(combinations)
            return None

        outcome.log(logging.INFO, "Creating results: %s", path)
        try:
            result = self._sweep(image, mask, points, self.space, counter)
        except FociError as exc:
            outcome.error = exc
            outcome.log(logging.ERROR, "%s", exc)
            return None
        if result is None:
            outcome.log(logging.INFO, "No results for %s", path)
        return result
