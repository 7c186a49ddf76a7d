#!/usr/bin/env python
#
# FindFoci Optimiser - Parameter Space
# © 2025 FindFoci Optimiser Authors
#

"""
Parse the textual range and list settings into enumerable dimensions.

Range settings use ``"min, max, interval"``; list settings are separated by
commas, semicolons or colons. Invalid input falls back to documented
defaults with a warning so that a run can always proceed.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import FociConfigError
from .schema import (
    AUTO_THRESHOLD_METHODS,
    BACKGROUND_ABSOLUTE,
    BACKGROUND_AUTO_THRESHOLD,
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    CENTRE_GAUSSIAN_ORIGINAL,
    CENTRE_GAUSSIAN_SEARCH,
    CENTRE_MAX_VALUE_SEARCH,
    CENTRE_OF_MASS_SEARCH,
    DEFAULT_STATISTICS_MODE,
    OptimiserConfig,
    SADDLE_OPTION_FLAGS,
    SEARCH_ABOVE_BACKGROUND,
    SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND,
    SORT_AVERAGE_INTENSITY_MINUS_MIN,
    SORT_INTENSITY,
    STATISTICS_MODES,
    background_method_has_parameter,
    background_method_has_statistics_mode,
    search_method_has_parameter,
)

logger = logging.getLogger(__name__)

_VALUE_SPLIT = re.compile(r";|,|:")
_NAME_SPLIT = re.compile(r"\s*;\s*|\s*,\s*|\s*:\s*")
_EPSILON = 1e-9
_DECIMALS = 10


@dataclass(frozen=True)
class ParameterDimension:
    """A finite set of values for one tunable.

    Either a ``{minimum, maximum, interval}`` triplet or an explicit sorted,
    de-duplicated ``discrete`` tuple.
    """

    minimum: float
    maximum: float
    interval: float = 1.0
    discrete: Optional[Tuple[float, ...]] = None
    integer: bool = False

    @classmethod
    def single(cls, value: float, integer: bool = False) -> "ParameterDimension":
        return cls(value, value, 1.0, integer=integer)

    @classmethod
    def from_values(
        cls, values: Iterable[float], integer: bool = False
    ) -> "ParameterDimension":
        unique = tuple(sorted(set(values)))
        if not unique:
            raise ValueError("A discrete dimension needs at least one value")
        return cls(unique[0], unique[-1], discrete=unique, integer=integer)

    def values(self) -> Tuple[float, ...]:
        if self.discrete is not None:
            values: Sequence[float] = self.discrete
        else:
            count = int(math.floor((self.maximum - self.minimum) / self.interval + _EPSILON)) + 1
            values = [
                min(round(self.minimum + i * self.interval, _DECIMALS), self.maximum)
                for i in range(count)
            ]
        if self.integer:
            return tuple(int(v) for v in values)
        return tuple(float(v) for v in values)

    def __len__(self) -> int:
        return len(self.values())

    def __iter__(self):
        return iter(self.values())


def split_values(text: str) -> List[float]:
    """Split text on ``;``, ``,`` or ``:`` ignoring tokens that are not numbers."""
    values: List[float] = []
    for token in _VALUE_SPLIT.split(text or ""):
        try:
            values.append(float(token))
        except ValueError:
            continue
    return values


def check_triplet(
    name: str,
    values: Sequence[float],
    default_min: float,
    default_interval: float,
) -> Tuple[float, float, float]:
    """Validate a ``(min, max, interval)`` triplet, applying defaults."""
    if not values:
        logger.warning(
            "%s: No min:max:increment, setting to default minimum %g",
            name,
            default_min,
        )
        return default_min, default_min, default_interval

    minimum = values[0]
    if minimum < default_min:
        logger.warning(
            "%s: Minimum below default (%g < %g), setting to default",
            name,
            minimum,
            default_min,
        )
        minimum = default_min

    maximum = minimum
    interval = default_interval
    if len(values) > 1:
        maximum = values[1]
        if maximum < minimum:
            logger.warning(
                "%s: Maximum below minimum (%g < %g), setting to minimum",
                name,
                maximum,
                minimum,
            )
            maximum = minimum

        if len(values) > 2:
            interval = values[2]
            if interval <= 0:
                logger.warning(
                    "%s: Interval is not strictly positive (%g), setting to default (%g)",
                    name,
                    interval,
                    default_interval,
                )
                interval = default_interval

    return minimum, maximum, interval


def parse_triplet(
    name: str,
    text: str,
    default_min: float,
    default_interval: float,
    integer: bool = False,
) -> ParameterDimension:
    minimum, maximum, interval = check_triplet(
        name, split_values(text), default_min, default_interval
    )
    if integer:
        minimum, maximum, interval = int(minimum), int(maximum), int(interval)
        if interval <= 0:
            interval = int(default_interval)
    return ParameterDimension(minimum, maximum, interval, integer=integer)


def parse_discrete(
    name: str,
    text: str,
    lower: float,
    upper: Optional[float],
    default: float,
    integer: bool = False,
) -> ParameterDimension:
    """Parse a discrete list, keeping values in ``[lower, upper]``."""
    values = set()
    for value in split_values(text):
        if integer:
            value = int(value)
        if value < lower or (upper is not None and value > upper):
            continue
        values.add(value)
    if not values:
        logger.warning("%s: No values, setting to default %s", name, default)
        values.add(default)
    return ParameterDimension.from_values(values, integer=integer)


def parse_names(text: str, choices: Sequence[str]) -> List[str]:
    """Match names case-insensitively, preserving order and dropping repeats."""
    lookup = {choice.lower(): choice for choice in choices}
    names: Dict[str, None] = {}
    for token in _NAME_SPLIT.split(text or ""):
        match = lookup.get(token.strip().lower())
        if match is not None:
            names[match] = None
    return list(names)


@dataclass
class ParameterSpace:
    """Every dimension of an optimisation run, in enumeration terms."""

    blur: ParameterDimension
    background_entries: List[Tuple[int, str]]
    statistics_modes: List[str]
    background_parameter: ParameterDimension
    search_methods: List[int]
    search_parameter: ParameterDimension
    peak_method: int
    peak_parameter: ParameterDimension
    min_size: ParameterDimension
    option_flags: List[int]
    sort_methods: ParameterDimension
    max_peaks: int
    centre_methods: ParameterDimension
    centre_parameter: ParameterDimension
    _centre_dimensions: Dict[int, ParameterDimension] = field(
        default_factory=dict, repr=False
    )

    def statistics_modes_for(self, background_method: int) -> List[str]:
        if background_method_has_statistics_mode(background_method):
            return list(self.statistics_modes)
        return [DEFAULT_STATISTICS_MODE]

    def background_parameter_values(self, background_method: int) -> Tuple[float, ...]:
        if background_method_has_parameter(background_method):
            return self.background_parameter.values()
        return (0.0,)

    def search_parameter_values(self, search_method: int) -> Tuple[float, ...]:
        if search_method_has_parameter(search_method):
            return self.search_parameter.values()
        return (0.0,)

    def centre_parameter_values(self, centre_method: int) -> Tuple[float, ...]:
        dimension = self._centre_dimensions.get(centre_method)
        if dimension is None:
            dimension = centre_dimension(centre_method, self.centre_parameter)
            self._centre_dimensions[centre_method] = dimension
        return dimension.values()

    def without_statistics_modes(self) -> "ParameterSpace":
        """Copy of this space that only uses the ``Both`` statistics mode."""
        return ParameterSpace(
            blur=self.blur,
            background_entries=list(self.background_entries),
            statistics_modes=[DEFAULT_STATISTICS_MODE],
            background_parameter=self.background_parameter,
            search_methods=list(self.search_methods),
            search_parameter=self.search_parameter,
            peak_method=self.peak_method,
            peak_parameter=self.peak_parameter,
            min_size=self.min_size,
            option_flags=list(self.option_flags),
            sort_methods=self.sort_methods,
            max_peaks=self.max_peaks,
            centre_methods=self.centre_methods,
            centre_parameter=self.centre_parameter,
        )


def centre_dimension(
    centre_method: int, centre_parameter: ParameterDimension
) -> ParameterDimension:
    """Centre parameter range for one centre method."""
    if centre_method == CENTRE_GAUSSIAN_SEARCH:
        # 0 = average projection and 1 = maximum projection; a range tries both
        lower = 0 if centre_parameter.minimum < centre_parameter.maximum else 1
        return ParameterDimension(lower, 1, 1, integer=True)
    if centre_method == CENTRE_OF_MASS_SEARCH:
        return centre_parameter
    return ParameterDimension.single(0, integer=True)


def build_parameter_space(config: OptimiserConfig) -> ParameterSpace:
    """Build the parameter space described by a configuration.

    Raises:
        FociConfigError: If no background or search method is selected, or
            auto-threshold is selected without a recognised threshold name.
    """
    thresholds = parse_names(config.threshold_method, AUTO_THRESHOLD_METHODS)
    if config.background_auto_threshold and not thresholds:
        raise FociConfigError(
            "No recognised methods for auto-threshold",
            context={"threshold_method": config.threshold_method},
        )

    background_entries: List[Tuple[int, str]] = []
    if config.background_absolute:
        background_entries.append((BACKGROUND_ABSOLUTE, ""))
    if config.background_auto_threshold:
        background_entries.extend((BACKGROUND_AUTO_THRESHOLD, t) for t in thresholds)
    if config.background_std_dev_above_mean:
        background_entries.append((BACKGROUND_STD_DEV_ABOVE_MEAN, ""))
    if not background_entries:
        raise FociConfigError("Require at least one background method")

    search_methods: List[int] = []
    if config.search_above_background:
        search_methods.append(SEARCH_ABOVE_BACKGROUND)
    if config.search_fraction_of_peak:
        search_methods.append(SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND)
    if not search_methods:
        raise FociConfigError("Require at least one search method")

    statistics_modes = parse_names(config.statistics_mode, STATISTICS_MODES)
    if not statistics_modes:
        statistics_modes = [DEFAULT_STATISTICS_MODE]

    return ParameterSpace(
        blur=parse_discrete("Gaussian blur", config.gaussian_blur, 0, None, 0),
        background_entries=background_entries,
        statistics_modes=statistics_modes,
        background_parameter=parse_triplet(
            "Background parameter", config.background_parameter, 0, 1
        ),
        search_methods=search_methods,
        search_parameter=parse_triplet(
            "Search parameter", config.search_parameter, 0, 1
        ),
        peak_method=config.peak_method_index,
        peak_parameter=parse_triplet("Peak parameter", config.peak_parameter, 0, 1),
        min_size=parse_triplet("Min size parameter", config.min_size, 1, 1, integer=True),
        option_flags=list(SADDLE_OPTION_FLAGS[config.minimum_above_saddle]),
        sort_methods=parse_discrete(
            "Sort method",
            config.sort_method,
            0,
            SORT_AVERAGE_INTENSITY_MINUS_MIN,
            SORT_INTENSITY,
            integer=True,
        ),
        max_peaks=config.max_peaks,
        centre_methods=parse_discrete(
            "Centre method",
            config.centre_method,
            CENTRE_MAX_VALUE_SEARCH,
            CENTRE_GAUSSIAN_ORIGINAL,
            CENTRE_MAX_VALUE_SEARCH,
            integer=True,
        ),
        centre_parameter=parse_triplet(
            "Centre parameter", config.centre_parameter, 0, 1, integer=True
        ),
    )
