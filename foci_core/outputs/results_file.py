#!/usr/bin/env python
#
# FindFoci Optimiser - Results Files
# © 2025 FindFoci Optimiser Authors
#

"""
Write and reload per-image optimisation results.

A results file is UTF-8, tab separated text named
``<short title>.results.xls``. Leading ``#`` lines hold the settings used
to produce it and the column legend; each data row holds the rank, the
eight canonical parameter fields, the match counts, the metrics and the
cumulative time in nanoseconds. A file is only reused when its data row
count equals the expected number of combinations.

A companion ``<short title>.params`` file stores the best options as
``key = value`` lines.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import FociParseError, FociPersistenceError
from ..options import FIELD_COUNT, FIELD_SEPARATOR, Options, format_number
from ..ranking import sort_results
from ..schema import (
    BACKGROUND_METHODS,
    CENTRE_METHODS,
    PARAMS_SUFFIX,
    PEAK_METHODS,
    RESULT_PRECISION,
    RESULTS_SUFFIX,
    SEARCH_METHODS,
    SORT_INDEX_METHODS,
    VERSION,
    Metric,
    OPTION_CONTIGUOUS_ABOVE_SADDLE,
    OPTION_MINIMUM_ABOVE_SADDLE,
    Result,
    statistics_mode_to_flags,
)
from ..scoring import create_result

# Module-level logger for results file diagnostics
logger = logging.getLogger(__name__)

RESULTS_HEADER = [
    "Rank",
    "Blur",
    "Background method",
    "Max",
    "Min",
    "Search method",
    "Peak method",
    "Sort method",
    "Centre method",
    "N",
    "TP",
    "FP",
    "FN",
    "Jaccard",
    "Precision",
    "Recall",
    "F0.5",
    "F1",
    "F2",
    "F-beta",
    "Score",
    "RMSD",
    "nanoSec",
]

# Metric columns in file order, after N, TP, FP and FN
_METRIC_COLUMNS = [
    Metric.JACCARD,
    Metric.PRECISION,
    Metric.RECALL,
    Metric.F05,
    Metric.F1,
    Metric.F2,
    Metric.FB,
    Metric.SCORE,
    Metric.RMSD,
]

# Older files were written without the RMSD column
_RMSD_MARKER = "\tRMSD"


class ParameterIdMap:
    """Thread-safe map from canonical parameter text to a stable id.

    The first occurrence of a text allocates the next id (starting at 1)
    and records the options parsed from it; texts that do not parse keep
    ``None`` as their options.
    """

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._options: Dict[int, Optional[Options]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._ids)

    def get_id(self, text: str, options: Optional[Options] = None) -> int:
        result_id = self._ids.get(text)
        if result_id is not None:
            return result_id
        with self._lock:
            result_id = self._ids.get(text)
            if result_id is None:
                result_id = len(self._ids) + 1
                if options is None:
                    options = _parse_options(text)
                self._options[result_id] = options
                self._ids[text] = result_id
        return result_id

    def register(self, options: Options) -> int:
        return self.get_id(options.to_string(), options)

    def options_for(self, result_id: int) -> Optional[Options]:
        return self._options.get(result_id)


def _parse_options(text: str) -> Optional[Options]:
    try:
        options = Options.parse(text)
    except FociParseError as exc:
        logger.warning("Cannot parse parameters %r: %s", text, exc)
        return None
    if options.to_string() != text:
        logger.warning(
            "Parameters do not round-trip: %r != %r", options.to_string(), text
        )
    return options


def results_path(output_directory: str, short_title: str) -> str:
    return os.path.join(output_directory, short_title + RESULTS_SUFFIX)


def params_path(output_directory: str, short_title: str) -> str:
    return os.path.join(output_directory, short_title + PARAMS_SUFFIX)


def format_result_row(result: Result) -> str:
    fields: List[str] = [str(int(result.metrics[Metric.RANK])), result.parameters]
    fields += [str(result.n), str(result.tp), str(result.fp), str(result.fn)]
    fields += [f"{result.metrics[i]:.{RESULT_PRECISION}f}" for i in _METRIC_COLUMNS]
    fields.append(str(int(result.time)))
    return FIELD_SEPARATOR.join(fields)


def save_results(
    path: str,
    results: Sequence[Result],
    *,
    settings: Optional[Dict[str, Any]] = None,
    image_path: Optional[str] = None,
    mask_path: Optional[str] = None,
) -> bool:
    """Write a results file and its ``.params`` companion.

    Write failures are logged as warnings and reported by returning False.
    """
    if not results:
        logger.debug("No results to save to %s", path)
        return False

    lines = [f"# FindFoci Optimiser {VERSION}"]
    if image_path:
        lines.append(f"# image = {image_path}")
    if mask_path:
        lines.append(f"# mask = {mask_path}")
    if settings is not None:
        lines.append("# settings = " + json.dumps(settings, sort_keys=True))
    lines.append("# best = " + results[0].parameters.replace(FIELD_SEPARATOR, " | "))
    lines.append("#")
    lines.append("# Results")
    lines.append("# " + FIELD_SEPARATOR.join(RESULTS_HEADER))

    logger.debug("Saving %d results to %s", len(results), path)
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as fp:
            for line in lines:
                fp.write(line + "\n")
            for result in results:
                fp.write(format_result_row(result) + "\n")
    except OSError as exc:
        error = FociPersistenceError(
            "Failed to write results file",
            filepath=path,
            original_error=exc,
        )
        logger.warning("%s", error)
        return False

    best = results[0].options
    if best is not None:
        base = path[: -len(RESULTS_SUFFIX)] if path.endswith(RESULTS_SUFFIX) else path
        return save_params(base + PARAMS_SUFFIX, best)
    return True


def count_data_lines(path: str) -> int:
    """Number of non-empty, non-comment lines (0 if unreadable)."""
    try:
        with open(path, encoding="utf-8") as fp:
            return sum(1 for line in fp if line.strip() and not line.startswith("#"))
    except OSError as exc:
        logger.debug("Cannot count lines in %s: %s", path, exc)
        return 0


def load_results(
    path: str,
    expected: int,
    id_map: ParameterIdMap,
    beta: float,
    sort_method: int,
) -> Optional[List[Result]]:
    """Reload a results file written by :func:`save_results`.

    Returns None when the file is missing, unreadable or does not hold
    exactly ``expected`` rows. Metrics are recomputed from the counts and
    the results are re-sorted to assign ranks.
    """
    if not os.path.isfile(path):
        return None
    rows = count_data_lines(path)
    if rows != expected:
        logger.debug("Ignoring %s: %d rows, expected %d", path, rows, expected)
        return None

    results: List[Result] = []
    has_rmsd = False
    try:
        with open(path, encoding="utf-8") as fp:
            for line in fp:
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                if line.startswith("#"):
                    if _RMSD_MARKER in line:
                        has_rmsd = True
                    continue
                results.append(_parse_row(line, id_map, beta, has_rmsd))
    except (OSError, ValueError, IndexError) as exc:
        logger.debug("Cannot load results from %s: %s", path, exc)
        return None

    sort_results(results, sort_method)
    return results


def _parse_row(line: str, id_map: ParameterIdMap, beta: float, has_rmsd: bool) -> Result:
    fields = line.split(FIELD_SEPARATOR)
    text = FIELD_SEPARATOR.join(fields[1 : 1 + FIELD_COUNT])
    counts = fields[1 + FIELD_COUNT :]
    n, tp, fp, fn = (int(v) for v in counts[:4])
    rmsd = float(counts[-2]) if has_rmsd else 0.0
    time = int(counts[-1])
    result_id = id_map.get_id(text)
    return create_result(
        result_id,
        id_map.options_for(result_id),
        n,
        tp,
        fp,
        fn,
        time,
        beta,
        rmsd,
        text=text,
    )


def save_params(path: str, options: Options) -> bool:
    """Write options as ``key = value`` lines for replay."""
    values = {
        "gaussian_blur": format_number(options.blur),
        "background_method": BACKGROUND_METHODS[options.background_method],
        "background_parameter": format_number(options.background_parameter),
        "auto_threshold": options.threshold_method,
        "statistics_mode": options.statistics_mode,
        "search_method": SEARCH_METHODS[options.search_method],
        "search_parameter": format_number(options.search_parameter),
        "minimum_size": str(options.min_size),
        "minimum_above_saddle": str(options.minimum_above_saddle).lower(),
        "connected_above_saddle": str(options.connected_above_saddle).lower(),
        "minimum_peak_height": PEAK_METHODS[options.peak_method],
        "peak_parameter": format_number(options.peak_parameter),
        "sort_method": SORT_INDEX_METHODS[options.sort_method],
        "maximum_peaks": str(options.max_peaks),
        "centre_method": CENTRE_METHODS[options.centre_method],
        "centre_parameter": format_number(options.centre_parameter),
    }
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as fp:
            for key, value in values.items():
                fp.write(f"{key} = {value}\n")
    except OSError as exc:
        error = FociPersistenceError(
            "Failed to write parameters file",
            filepath=path,
            original_error=exc,
        )
        logger.warning("%s", error)
        return False
    return True


def load_params(path: str) -> Options:
    """Read options written by :func:`save_params`.

    Raises:
        FociParseError: If a key is missing or a value is invalid.
        OSError: If the file cannot be read.
    """
    values: Dict[str, str] = {}
    with open(path, encoding="utf-8") as fp:
        for line in fp:
            key, sep, value = line.partition(" = ")
            if sep:
                values[key.strip()] = value.rstrip("\n")
    try:
        flags = statistics_mode_to_flags(values["statistics_mode"])
        if values["minimum_above_saddle"] == "true":
            flags |= OPTION_MINIMUM_ABOVE_SADDLE
        if values["connected_above_saddle"] == "true":
            flags |= OPTION_CONTIGUOUS_ABOVE_SADDLE
        return Options(
            blur=float(values["gaussian_blur"]),
            background_method=BACKGROUND_METHODS.index(values["background_method"]),
            background_parameter=float(values["background_parameter"]),
            threshold_method=values["auto_threshold"],
            search_method=SEARCH_METHODS.index(values["search_method"]),
            search_parameter=float(values["search_parameter"]),
            max_peaks=int(values["maximum_peaks"]),
            min_size=int(values["minimum_size"]),
            peak_method=PEAK_METHODS.index(values["minimum_peak_height"]),
            peak_parameter=float(values["peak_parameter"]),
            sort_method=SORT_INDEX_METHODS.index(values["sort_method"]),
            options=flags,
            centre_method=CENTRE_METHODS.index(values["centre_method"]),
            centre_parameter=float(values["centre_parameter"]),
        )
    except (KeyError, ValueError) as exc:
        raise FociParseError(
            "Invalid parameters file",
            parameter_name="params",
            provided_value=path,
            original_error=exc,
        ) from exc
