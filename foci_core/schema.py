#!/usr/bin/env python
#
# FindFoci Optimiser - Schema definitions
# © 2025 FindFoci Optimiser Authors
#

"""
Data structures, constants, and method tables for the FindFoci optimiser.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import multiprocessing as mp

if TYPE_CHECKING:
    from .options import Options

# ==========================================
# Version
# ==========================================
VERSION = "1.0.0"

# ==========================================
# Algorithm Method Tables
# ==========================================
BACKGROUND_ABSOLUTE = 0
BACKGROUND_MEAN = 1
BACKGROUND_STD_DEV_ABOVE_MEAN = 2
BACKGROUND_AUTO_THRESHOLD = 3
BACKGROUND_MIN_ROI = 4
BACKGROUND_NONE = 5

BACKGROUND_METHODS = [
    "Absolute",
    "Mean",
    "Std.Dev above mean",
    "Auto threshold",
    "Min Mask/ROI",
    "None",
]

SEARCH_ABOVE_BACKGROUND = 0
SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND = 1
SEARCH_HALF_PEAK_VALUE = 2

SEARCH_METHODS = [
    "Above background",
    "Fraction of peak - background",
    "Half peak value",
]

PEAK_ABSOLUTE = 0
PEAK_RELATIVE = 1
PEAK_RELATIVE_ABOVE_BACKGROUND = 2

PEAK_METHODS = [
    "Absolute height",
    "Relative height",
    "Relative above background",
]

SORT_INTENSITY = 1
SORT_AVERAGE_INTENSITY_MINUS_MIN = 17

SORT_INDEX_METHODS = [
    "Size",
    "Total intensity",
    "Max value",
    "Average intensity",
    "Total intensity minus background",
    "Average intensity minus background",
    "X",
    "Y",
    "Z",
    "Saddle height",
    "Size above saddle",
    "Intensity above saddle",
    "Absolute height",
    "Relative height >Bg",
    "Peak ID",
    "XYZ",
    "Total intensity minus min",
    "Average intensity minus min",
]

CENTRE_MAX_VALUE_SEARCH = 0
CENTRE_MAX_VALUE_ORIGINAL = 1
CENTRE_OF_MASS_SEARCH = 2
CENTRE_OF_MASS_ORIGINAL = 3
CENTRE_GAUSSIAN_SEARCH = 4
CENTRE_GAUSSIAN_ORIGINAL = 5

CENTRE_METHODS = [
    "Max value (search image)",
    "Max value (original image)",
    "Centre of mass (search image)",
    "Centre of mass (original image)",
    "Gaussian (search image)",
    "Gaussian (original image)",
]

STATISTICS_MODES = ["Both", "Inside", "Outside"]

AUTO_THRESHOLD_METHODS = sorted(
    [
        "Default",
        "Huang",
        "Intermodes",
        "IsoData",
        "Li",
        "MaxEntropy",
        "MinError(I)",
        "Minimum",
        "Moments",
        "Otsu",
        "Otsu_3_Level",
        "Otsu_4_Level",
        "Percentile",
        "RenyiEntropy",
        "Shanbhag",
        "Triangle",
        "Yen",
    ]
)

# Option flags understood by the merge-final stage
OPTION_MINIMUM_ABOVE_SADDLE = 1
OPTION_STATS_OUTSIDE = 2
OPTION_STATS_INSIDE = 4
OPTION_CONTIGUOUS_ABOVE_SADDLE = 128
STATS_MASK = OPTION_STATS_OUTSIDE | OPTION_STATS_INSIDE

SADDLE_OPTIONS = ["Yes", "Yes - Connected", "No", "All"]
SADDLE_OPTION_FLAGS = {
    "Yes": [OPTION_MINIMUM_ABOVE_SADDLE],
    "Yes - Connected": [OPTION_MINIMUM_ABOVE_SADDLE | OPTION_CONTIGUOUS_ABOVE_SADDLE],
    "No": [0],
    "All": [
        OPTION_MINIMUM_ABOVE_SADDLE,
        OPTION_MINIMUM_ABOVE_SADDLE | OPTION_CONTIGUOUS_ABOVE_SADDLE,
        0,
    ],
}

MATCH_SEARCH_METHODS = ["Relative", "Absolute"]
SCORING_MODES = ["Raw", "Z-score", "Relative", "Rank"]
SCORE_RAW = 0
SCORE_Z = 1
SCORE_RELATIVE = 2
SCORE_RANK = 3


def background_method_has_statistics_mode(method: int) -> bool:
    return method not in (BACKGROUND_NONE, BACKGROUND_ABSOLUTE)


def background_method_has_parameter(method: int) -> bool:
    return method not in (BACKGROUND_NONE, BACKGROUND_MEAN, BACKGROUND_AUTO_THRESHOLD)


def search_method_has_parameter(method: int) -> bool:
    return method != SEARCH_ABOVE_BACKGROUND


def centre_method_has_parameter(method: int) -> bool:
    return method in (CENTRE_OF_MASS_SEARCH, CENTRE_GAUSSIAN_SEARCH)


def statistics_mode_to_flags(mode: str) -> int:
    """Convert a statistics mode name to its option bits ("Both" is 0)."""
    lowered = mode.lower()
    if lowered == "inside":
        return OPTION_STATS_INSIDE
    if lowered == "outside":
        return OPTION_STATS_OUTSIDE
    return 0


def statistics_mode_from_flags(options: int) -> str:
    bits = options & STATS_MASK
    if bits == OPTION_STATS_INSIDE:
        return "Inside"
    if bits == OPTION_STATS_OUTSIDE:
        return "Outside"
    return "Both"


# ==========================================
# Result Metrics
# ==========================================
class Metric(IntEnum):
    """Fixed slots of ``Result.metrics``."""

    PRECISION = 0
    RECALL = 1
    F05 = 2
    F1 = 3
    F2 = 4
    FB = 5
    JACCARD = 6
    RANK = 7
    SCORE = 8
    RMSD = 9


METRIC_COUNT = len(Metric)

RESULT_SORT_METHODS = [
    "None",
    "Precision",
    "Recall",
    "F0.5",
    "F1",
    "F2",
    "F-beta",
    "Jaccard",
    "RMSD",
]
SORT_NONE = 0
SORT_JACCARD = 7
SORT_RMSD = 8


def get_sort_index(sort_method: int) -> Metric:
    """Map a result sort method to the metric slot it reads."""
    if 0 < sort_method <= SORT_JACCARD:
        return Metric(sort_method - 1)
    if sort_method == SORT_RMSD:
        return Metric.RMSD
    raise ValueError(f"No metric slot for result sort method {sort_method}")


# ==========================================
# Default Settings
# ==========================================
DEFAULT_BACKGROUND_PARAMETER = "2.5, 3.5, 0.5"
DEFAULT_THRESHOLD_METHOD = "Otsu"
DEFAULT_STATISTICS_MODE = "Both"
DEFAULT_SEARCH_PARAMETER = "0, 0.6, 0.2"
DEFAULT_MIN_SIZE = "1, 9, 2"
DEFAULT_MINIMUM_ABOVE_SADDLE = "Yes"
DEFAULT_PEAK_METHOD = PEAK_METHODS[PEAK_RELATIVE_ABOVE_BACKGROUND]
DEFAULT_PEAK_PARAMETER = "0, 0.6, 0.2"
DEFAULT_SORT_METHOD = "1"
DEFAULT_MAX_PEAKS = 500
DEFAULT_GAUSSIAN_BLUR = "0, 0.5, 1"
DEFAULT_CENTRE_METHOD = "0"
DEFAULT_CENTRE_PARAMETER = "2"
DEFAULT_MATCH_SEARCH_METHOD = "Relative"
DEFAULT_MATCH_SEARCH_DISTANCE = 0.05
DEFAULT_RESULT_SORT_METHOD = "Jaccard"
DEFAULT_BETA = 4.0
DEFAULT_MAX_RESULTS = 100
DEFAULT_STEP_LIMIT = 10000
DEFAULT_SCORING_MODE = "Raw"
DEFAULT_PIPELINE_NAME = "simple"
DEFAULT_NUM_WORKERS = max(1, mp.cpu_count() - 1)

RESULTS_SUFFIX = ".results.xls"
PARAMS_SUFFIX = ".params"
COMBINED_RESULTS_NAME = "all"
RESULT_PRECISION = 4

POINTS_EXTENSIONS = [".csv", ".xyz", ".txt"]

# Values mirror the "Testing", "Default" and "Benchmark" presets of FindFoci.
PRESETS: Dict[str, Dict[str, Any]] = {
    "testing": {
        "background_parameter": "3",
        "background_std_dev_above_mean": False,
        "background_absolute": False,
        "background_auto_threshold": True,
        "search_above_background": True,
        "search_fraction_of_peak": False,
        "search_parameter": "0, 0.6, 0.2",
        "peak_parameter": "0, 0.6, 0.2",
        "min_size": "3, 9, 2",
        "gaussian_blur": "1",
        "step_limit": 10000,
    },
    "default": {},
    "benchmark": {
        "background_parameter": "0, 4.7, 0.667",
        "threshold_method": "Otsu, RenyiEntropy, Triangle",
        "search_parameter": "0, 0.8, 0.1",
        "peak_parameter": "0, 0.8, 0.1",
        "gaussian_blur": "0, 0.5, 1, 2",
        "step_limit": 30000,
    },
}


@dataclass
class OptimiserConfig:
    """Configuration for a FindFoci optimisation run.

    Range fields hold the textual ``"min, max, interval"`` form (or a
    comma separated list for the discrete dimensions); they are parsed by
    ``foci_core.parameters.build_parameter_space``.
    """

    background_parameter: str = DEFAULT_BACKGROUND_PARAMETER
    background_absolute: bool = False
    background_auto_threshold: bool = True
    background_std_dev_above_mean: bool = True
    threshold_method: str = DEFAULT_THRESHOLD_METHOD
    statistics_mode: str = DEFAULT_STATISTICS_MODE
    search_above_background: bool = True
    search_fraction_of_peak: bool = True
    search_parameter: str = DEFAULT_SEARCH_PARAMETER
    min_size: str = DEFAULT_MIN_SIZE
    minimum_above_saddle: str = DEFAULT_MINIMUM_ABOVE_SADDLE
    peak_method: str = DEFAULT_PEAK_METHOD
    peak_parameter: str = DEFAULT_PEAK_PARAMETER
    sort_method: str = DEFAULT_SORT_METHOD
    max_peaks: int = DEFAULT_MAX_PEAKS
    gaussian_blur: str = DEFAULT_GAUSSIAN_BLUR
    centre_method: str = DEFAULT_CENTRE_METHOD
    centre_parameter: str = DEFAULT_CENTRE_PARAMETER

    match_search_method: str = DEFAULT_MATCH_SEARCH_METHOD
    match_search_distance: float = DEFAULT_MATCH_SEARCH_DISTANCE
    result_sort_method: str = DEFAULT_RESULT_SORT_METHOD
    beta: float = DEFAULT_BETA
    max_results: int = DEFAULT_MAX_RESULTS
    step_limit: int = DEFAULT_STEP_LIMIT
    scoring_mode: str = DEFAULT_SCORING_MODE
    reuse_results: bool = True

    num_workers: int = DEFAULT_NUM_WORKERS
    pipeline: str = DEFAULT_PIPELINE_NAME
    pipeline_config: Optional[Dict[str, Any]] = None
    output_directory: Optional[str] = None
    mask_directory: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.step_limit < 1:
            raise ValueError(f"step_limit must be >= 1, got {self.step_limit}")
        if self.max_peaks < 1:
            raise ValueError(f"max_peaks must be >= 1, got {self.max_peaks}")
        if self.beta <= 0:
            raise ValueError(f"beta must be > 0, got {self.beta}")
        if self.match_search_distance <= 0:
            raise ValueError(
                f"match_search_distance must be > 0, got {self.match_search_distance}"
            )
        _require_choice("minimum_above_saddle", self.minimum_above_saddle, SADDLE_OPTIONS)
        _require_choice("peak_method", self.peak_method, PEAK_METHODS)
        _require_choice(
            "match_search_method", self.match_search_method, MATCH_SEARCH_METHODS
        )
        _require_choice(
            "result_sort_method", self.result_sort_method, RESULT_SORT_METHODS[1:]
        )
        _require_choice("scoring_mode", self.scoring_mode, SCORING_MODES)

    @property
    def peak_method_index(self) -> int:
        return PEAK_METHODS.index(self.peak_method)

    @property
    def result_sort_method_index(self) -> int:
        return RESULT_SORT_METHODS.index(self.result_sort_method)

    @property
    def scoring_mode_index(self) -> int:
        return SCORING_MODES.index(self.scoring_mode)

    @property
    def absolute_match_distance(self) -> bool:
        return self.match_search_method == "Absolute"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of the configuration.
        """
        return {
            "background_parameter": self.background_parameter,
            "background_absolute": self.background_absolute,
            "background_auto_threshold": self.background_auto_threshold,
            "background_std_dev_above_mean": self.background_std_dev_above_mean,
            "threshold_method": self.threshold_method,
            "statistics_mode": self.statistics_mode,
            "search_above_background": self.search_above_background,
            "search_fraction_of_peak": self.search_fraction_of_peak,
            "search_parameter": self.search_parameter,
            "min_size": self.min_size,
            "minimum_above_saddle": self.minimum_above_saddle,
            "peak_method": self.peak_method,
            "peak_parameter": self.peak_parameter,
            "sort_method": self.sort_method,
            "max_peaks": self.max_peaks,
            "gaussian_blur": self.gaussian_blur,
            "centre_method": self.centre_method,
            "centre_parameter": self.centre_parameter,
            "match_search_method": self.match_search_method,
            "match_search_distance": self.match_search_distance,
            "result_sort_method": self.result_sort_method,
            "beta": self.beta,
            "max_results": self.max_results,
            "step_limit": self.step_limit,
            "scoring_mode": self.scoring_mode,
            "reuse_results": self.reuse_results,
            "num_workers": self.num_workers,
            "pipeline": self.pipeline,
            "pipeline_config": self.pipeline_config,
            "output_directory": self.output_directory,
            "mask_directory": self.mask_directory,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimiserConfig":
        """Create configuration from dictionary.

        An optional ``preset`` key selects one of ``PRESETS`` as the base;
        explicit keys override the preset values. Unknown keys are rejected.

        Args:
            data: Dictionary containing configuration values.

        Returns:
            OptimiserConfig instance.
        """
        values = dict(data)
        preset_name = values.pop("preset", None)
        merged: Dict[str, Any] = {}
        if preset_name is not None:
            merged.update(get_preset(preset_name))
        merged.update(values)

        known = set(cls().to_dict())
        unknown = sorted(set(merged) - known)
        if unknown:
            raise KeyError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**merged)

    @classmethod
    def from_preset(cls, name: str) -> "OptimiserConfig":
        return cls(**get_preset(name))


def get_preset(name: str) -> Dict[str, Any]:
    key = name.lower()
    if key not in PRESETS:
        raise ValueError(
            f"Unknown preset '{name}'. Available: {', '.join(sorted(PRESETS))}"
        )
    return dict(PRESETS[key])


def _require_choice(name: str, value: str, choices: List[str]) -> None:
    if value not in choices:
        raise ValueError(f"{name} must be one of {choices}, got {value!r}")


# ==========================================
# Results
# ==========================================
@dataclass
class Result:
    """Match statistics for one parameter combination on one image.

    Attributes:
        id: Stable identifier of the parameter combination.
        options: Parameters used, or None when they could not be parsed
            from a cached results file.
        n: Number of predicted points.
        tp: True positives.
        fp: False positives.
        fn: False negatives.
        time: Cumulative stage time in nanoseconds.
        metrics: Values indexed by ``Metric``.
    """

    id: int
    options: Optional["Options"]
    n: int
    tp: int
    fp: int
    fn: int
    time: int
    metrics: List[float] = field(default_factory=lambda: [0.0] * METRIC_COUNT)
    text: Optional[str] = None

    @property
    def parameters(self) -> str:
        """Canonical parameter text identifying this combination."""
        if self.options is not None:
            return self.options.to_string()
        return self.text or ""


@dataclass
class OptimiserResult:
    """All results for one image.

    Attributes:
        results: Per-combination results.
        elapsed_time: Wall-clock time of the sweep in nanoseconds
            (0 when the results were loaded from a cache file).
        total_stage_time: Sum of the per-combination cumulative times.
    """

    results: List[Result]
    elapsed_time: int = 0
    total_stage_time: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_stage_time = sum(r.time for r in self.results)

    @property
    def speed_up(self) -> float:
        if self.elapsed_time <= 0:
            return 0.0
        return self.total_stage_time / self.elapsed_time
