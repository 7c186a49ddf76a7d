#!/usr/bin/env python
#
# FindFoci Optimiser - Core Package
# © 2025 FindFoci Optimiser Authors
#

"""
FindFoci parameter optimisation core library.

This package sweeps the parameters of a staged maxima-detection pipeline
and ranks every combination against hand-marked reference points:
- schema: Constants, configuration and result records
- parameters: Parameter space parsing and validation
- options: Canonical parameter text
- enumerator: Combination enumeration and stage orchestration
- matching / scoring: Point matching and match metrics
- ranking / normalize / aggregate: Result ordering, scores and batch averaging
- outputs: Results files and progress accounting
- stages: Pipeline interface, registry and the built-in pipeline
- optimiser: Single-image and batch runs

Logging:
    This library uses Python's standard logging module. By default, a NullHandler
    is attached to prevent "No handler found" warnings. To see log output, configure
    logging in your application:

    Example:
        >>> import logging
        >>> logging.basicConfig(level=logging.INFO)

    Or attach a handler to the 'foci_core' logger:

        >>> import logging
        >>> logger = logging.getLogger('foci_core')
        >>> logger.addHandler(logging.StreamHandler())
        >>> logger.setLevel(logging.DEBUG)
"""

import logging

_logger = logging.getLogger(__name__)
_logger.addHandler(logging.NullHandler())

from .schema import (  # noqa: E402
    VERSION,
    COMBINED_RESULTS_NAME,
    PARAMS_SUFFIX,
    PRESETS,
    RESULTS_SUFFIX,
    SCORE_RANK,
    SCORE_RAW,
    SCORE_RELATIVE,
    SCORE_Z,
    SORT_RMSD,
    Metric,
    OptimiserConfig,
    OptimiserResult,
    Result,
    get_preset,
    get_sort_index,
)

from .exceptions import (  # noqa: E402
    FociAggregationError,
    FociConfigError,
    FociError,
    FociLoadError,
    FociParseError,
    FociPersistenceError,
    FociPipelineError,
    FociStepLimitError,
    FociValidationError,
    format_error_for_user,
)

from .options import Options  # noqa: E402
from .parameters import (  # noqa: E402
    ParameterDimension,
    ParameterSpace,
    build_parameter_space,
)
from .enumerator import Enumerator, check_step_limit, count_steps, iter_options  # noqa: E402
from .matching import MatchResult, match_points  # noqa: E402
from .scoring import Scorer, calculate_f_score, compute_metrics, distance_threshold  # noqa: E402
from .ranking import ResultComparator, sort_results, sort_results_by_score  # noqa: E402
from .normalize import get_score  # noqa: E402
from .aggregate import add_result, combine_results  # noqa: E402
from .image_io import (  # noqa: E402
    find_mask,
    find_points,
    list_input_files,
    load_image,
    load_points,
    points_in_mask,
    short_title,
)
from .config_io import load_config, save_config  # noqa: E402
from .outputs import (  # noqa: E402
    ConcurrentCounter,
    Counter,
    ParameterIdMap,
    load_params,
    load_results,
    save_params,
    save_results,
)
from .stages import BaseMaximaPipeline, PipelineRegistry, SimpleMaximaPipeline  # noqa: E402
from .optimiser import (  # noqa: E402
    BatchResult,
    FociOptimiser,
    WorkerOutcome,
    check_optimisation_space,
)

__all__ = [
    # Version
    "VERSION",
    # Constants
    "COMBINED_RESULTS_NAME",
    "PARAMS_SUFFIX",
    "PRESETS",
    "RESULTS_SUFFIX",
    "SCORE_RANK",
    "SCORE_RAW",
    "SCORE_RELATIVE",
    "SCORE_Z",
    "SORT_RMSD",
    # Data Classes
    "Metric",
    "OptimiserConfig",
    "OptimiserResult",
    "Result",
    "Options",
    "ParameterDimension",
    "ParameterSpace",
    "MatchResult",
    "get_preset",
    "get_sort_index",
    # Exceptions
    "FociAggregationError",
    "FociConfigError",
    "FociError",
    "FociLoadError",
    "FociParseError",
    "FociPersistenceError",
    "FociPipelineError",
    "FociStepLimitError",
    "FociValidationError",
    "format_error_for_user",
    # Parameter space
    "build_parameter_space",
    "check_step_limit",
    "count_steps",
    "iter_options",
    "Enumerator",
    # Matching and scoring
    "match_points",
    "Scorer",
    "calculate_f_score",
    "compute_metrics",
    "distance_threshold",
    # Ranking and aggregation
    "ResultComparator",
    "sort_results",
    "sort_results_by_score",
    "get_score",
    "add_result",
    "combine_results",
    # I/O
    "find_mask",
    "find_points",
    "list_input_files",
    "load_image",
    "load_points",
    "points_in_mask",
    "short_title",
    "load_config",
    "save_config",
    # Outputs
    "ConcurrentCounter",
    "Counter",
    "ParameterIdMap",
    "load_params",
    "load_results",
    "save_params",
    "save_results",
    # Pipelines
    "BaseMaximaPipeline",
    "PipelineRegistry",
    "SimpleMaximaPipeline",
    # Optimiser
    "BatchResult",
    "FociOptimiser",
    "WorkerOutcome",
    "check_optimisation_space",
]
