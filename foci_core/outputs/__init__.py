#!/usr/bin/env python
#
# FindFoci Optimiser - Outputs Package
# © 2025 FindFoci Optimiser Authors
#

"""
Results persistence and progress accounting.

Recommended usage::

    from foci_core.outputs import ParameterIdMap, load_results, save_results

    id_map = ParameterIdMap()
    results = load_results("out/cells.results.xls", 1200, id_map, 4.0, 7)
    if results is None:
        ...  # recompute, then
        save_results("out/cells.results.xls", computed)
"""

from .progress import ConcurrentCounter, Counter, ProgressCallback, log_progress
from .results_file import (
    RESULTS_HEADER,
    ParameterIdMap,
    count_data_lines,
    format_result_row,
    load_params,
    load_results,
    params_path,
    results_path,
    save_params,
    save_results,
)

__all__ = [
    "ConcurrentCounter",
    "Counter",
    "ParameterIdMap",
    "ProgressCallback",
    "RESULTS_HEADER",
    "count_data_lines",
    "format_result_row",
    "load_params",
    "load_results",
    "log_progress",
    "params_path",
    "results_path",
    "save_params",
    "save_results",
]
