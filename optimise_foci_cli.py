#!/usr/bin/env python
#
# FindFoci Optimiser CLI
# © 2025 FindFoci Optimiser Authors
#
# CLI entry point for FindFoci parameter optimisation.
# This module handles argument parsing and delegates to foci_core.
#

import os
import sys
import argparse
import logging
from typing import Any, Dict, List, Optional, Sequence

from foci_core import (
    VERSION,
    FociConfigError,
    FociError,
    FociOptimiser,
    OptimiserConfig,
    PipelineRegistry,
    PRESETS,
    Result,
    format_error_for_user,
    get_preset,
    load_config,
    save_config,
)
from foci_core.config_io import SUPPORTED_CONFIG_EXTENSIONS
from foci_core.outputs import RESULTS_HEADER, format_result_row
from foci_core.schema import (
    MATCH_SEARCH_METHODS,
    PEAK_METHODS,
    RESULT_SORT_METHODS,
    SADDLE_OPTIONS,
    SCORING_MODES,
)

# OptimiserConfig field -> argparse dest
_CONFIG_DESTS = {
    "gaussian_blur": "blur",
    "background_parameter": "background_parameter",
    "threshold_method": "threshold_method",
    "statistics_mode": "statistics_mode",
    "search_parameter": "search_parameter",
    "min_size": "min_size",
    "minimum_above_saddle": "above_saddle",
    "peak_method": "peak_method",
    "peak_parameter": "peak_parameter",
    "sort_method": "sort_method",
    "max_peaks": "max_peaks",
    "centre_method": "centre_method",
    "centre_parameter": "centre_parameter",
    "match_search_method": "match_method",
    "match_search_distance": "match_distance",
    "beta": "beta",
    "max_results": "max_results",
    "output_directory": "output",
    "mask_directory": "mask_dir",
    "num_workers": "workers",
    "step_limit": "step_limit",
    "result_sort_method": "result_sort",
    "scoring_mode": "scoring_mode",
    "pipeline": "pipeline",
}


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description=(
            "Find the FindFoci parameters that best reproduce hand-marked "
            "reference points"
        )
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"FindFoci Optimiser {VERSION}",
    )
    parser.add_argument(
        "input",
        nargs="?",
        default=None,
        help="Image file (single mode) or folder of images (batch mode)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help=(
            "Path to optimiser configuration file (YAML/JSON). "
            f"Supported extensions: {', '.join(sorted(SUPPORTED_CONFIG_EXTENSIONS))}."
        ),
    )
    parser.add_argument(
        "--save-config",
        type=str,
        default=None,
        help="Write the resolved configuration to this file and exit",
    )
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default=None,
        help="Start from a named preset (default: built-in defaults)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Folder for results files (batch default: the input folder)",
    )
    parser.add_argument(
        "--mask-dir",
        default=None,
        help="Folder holding mask images named like the input images",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of images optimised in parallel (batch mode)",
    )
    parser.add_argument(
        "--step-limit",
        type=int,
        default=None,
        help="Maximum number of parameter combinations",
    )
    parser.add_argument(
        "--result-sort",
        choices=RESULT_SORT_METHODS[1:],
        default=None,
        help="Metric used to rank results",
    )
    parser.add_argument(
        "--scoring-mode",
        choices=SCORING_MODES,
        default=None,
        help="Per-image score normalisation before batch averaging",
    )
    parser.add_argument(
        "--pipeline",
        default=None,
        help="Maxima-detection pipeline plugin name",
    )
    parser.add_argument(
        "--no-reuse",
        action="store_true",
        help="Recompute results even when a matching results file exists",
    )
    parser.add_argument(
        "--list-pipelines",
        action="store_true",
        help="List available maxima-detection pipelines and exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show debug logging",
    )

    ranges = parser.add_argument_group(
        "parameter ranges",
        'Ranges are "min, max, interval"; method lists are comma separated',
    )
    ranges.add_argument("--blur", default=None, help="Gaussian blur values")
    ranges.add_argument("--background-parameter", default=None, help="Background parameter range")
    ranges.add_argument("--threshold-method", default=None, help="Auto-threshold methods")
    ranges.add_argument("--statistics-mode", default=None, help="Statistics modes (Both, Inside, Outside)")
    ranges.add_argument("--search-parameter", default=None, help="Search parameter range")
    ranges.add_argument("--min-size", default=None, help="Minimum size range")
    ranges.add_argument("--above-saddle", choices=SADDLE_OPTIONS, default=None, help="Minimum above saddle")
    ranges.add_argument("--peak-method", choices=PEAK_METHODS, default=None, help="Minimum peak height method")
    ranges.add_argument("--peak-parameter", default=None, help="Peak parameter range")
    ranges.add_argument("--sort-method", default=None, help="Peak sort methods (indices)")
    ranges.add_argument("--max-peaks", type=int, default=None, help="Maximum peaks per image")
    ranges.add_argument("--centre-method", default=None, help="Centre methods (indices)")
    ranges.add_argument("--centre-parameter", default=None, help="Centre parameter range")
    ranges.add_argument("--match-method", choices=MATCH_SEARCH_METHODS, default=None, help="Match distance mode")
    ranges.add_argument("--match-distance", type=float, default=None, help="Match distance")
    ranges.add_argument("--beta", type=float, default=None, help="F-beta weight")
    ranges.add_argument("--max-results", type=int, default=None, help="Number of results to print")
    return parser


def _configure_logging(verbose: bool) -> None:
    """Configure logging for CLI execution.

    Optimiser progress is reported at INFO; verbose mode adds DEBUG output.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
        force=True,
    )


def build_config(args) -> OptimiserConfig:
    """Resolve the configuration: file, then preset, then explicit flags."""
    if args.config:
        data: Dict[str, Any] = load_config(args.config).to_dict()
        if args.preset:
            data.update(get_preset(args.preset))
    else:
        data = {"preset": args.preset} if args.preset else {}

    for field_name, dest in _CONFIG_DESTS.items():
        value = getattr(args, dest)
        if value is not None:
            data[field_name] = value
    if args.no_reuse:
        data["reuse_results"] = False

    try:
        return OptimiserConfig.from_dict(data)
    except (TypeError, ValueError, KeyError) as exc:
        raise FociConfigError(
            "Invalid optimiser configuration", original_error=exc
        ) from exc


def _print_progress(done: int, total: int) -> None:
    print(f"Optimising: {done}/{total} ({100.0 * done / total:.1f}%)", end="\r", flush=True)
    if done >= total:
        print()


def print_results(results: Sequence[Result], max_results: int, title: str) -> None:
    """Print the top ranked results as a tab separated table."""
    print(f"\n{title}")
    print("\t".join(RESULTS_HEADER))
    for result in results[:max_results]:
        print(format_result_row(result))


def _list_pipelines() -> None:
    for name in PipelineRegistry.list_available():
        info = PipelineRegistry.create(name).get_info()
        print(f"{name}\t{info['name']} {info['version']}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.list_pipelines:
            _list_pipelines()
            return 0

        config = build_config(args)
        if args.save_config:
            save_config(config, args.save_config)
            print(f"Configuration saved to {args.save_config}")
            return 0

        if not args.input:
            parser.error("an input image or folder is required")

        optimiser = FociOptimiser(config, progress=_print_progress)
        if os.path.isdir(args.input):
            batch = optimiser.run_batch(args.input)
            if batch.combined:
                print_results(batch.combined, config.max_results, "Combined results")
        else:
            result = optimiser.run_single_file(args.input)
            if result is None:
                print("No optimisation results", file=sys.stderr)
                return 1
            print_results(result.results, config.max_results, args.input)
        return 0
    except FociError as e:
        print(format_error_for_user(e, verbose=args.verbose), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        # Unexpected errors - show traceback in verbose mode
        if args.verbose:
            import traceback

            traceback.print_exc()
        else:
            print(
                f"\nUnexpected error: {type(e).__name__}: {e}\n"
                "Run with --verbose for the full traceback.",
                file=sys.stderr,
            )
        return 1


if __name__ == "__main__":
    sys.exit(main())
