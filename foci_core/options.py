#!/usr/bin/env python
#
# FindFoci Optimiser - Parameter Options
# © 2025 FindFoci Optimiser Authors
#

"""
Immutable snapshot of every tunable FindFoci value for one combination.

The canonical text form is eight tab-separated fields in the column
order of the results file::

    Blur  Background method  Max  Min  Search method  Peak method  Sort method  Centre method

Fields a method does not use are normalised on construction so that
``Options.parse(options.to_string()) == options`` holds for every instance.
"""

from dataclasses import dataclass
from functools import cached_property
from typing import List

from .exceptions import FociParseError, FociValidationError
from .schema import (
    BACKGROUND_AUTO_THRESHOLD,
    BACKGROUND_METHODS,
    CENTRE_METHODS,
    OPTION_CONTIGUOUS_ABOVE_SADDLE,
    OPTION_MINIMUM_ABOVE_SADDLE,
    PEAK_METHODS,
    SEARCH_METHODS,
    SORT_INDEX_METHODS,
    STATISTICS_MODES,
    STATS_MASK,
    background_method_has_parameter,
    background_method_has_statistics_mode,
    centre_method_has_parameter,
    search_method_has_parameter,
    statistics_mode_from_flags,
    statistics_mode_to_flags,
)

FIELD_SEPARATOR = "\t"
PARAMETER_SEPARATOR = " : "
SADDLE_SUFFIX = " >saddle"
CONNECTED_SUFFIX = " conn"
FIELD_COUNT = 8

_KNOWN_FLAGS = OPTION_MINIMUM_ABOVE_SADDLE | OPTION_CONTIGUOUS_ABOVE_SADDLE | STATS_MASK


def format_number(value: float) -> str:
    """Shortest text that parses back to the same float."""
    return repr(float(value))


def _check_index(name: str, value: int, table: List[str]) -> None:
    if not 0 <= value < len(table):
        raise FociValidationError(
            f"Invalid {name}",
            parameter_name=name,
            provided_value=value,
            expected=f"index in [0, {len(table) - 1}]",
        )


@dataclass(frozen=True)
class Options:
    blur: float
    background_method: int
    background_parameter: float
    threshold_method: str
    search_method: int
    search_parameter: float
    max_peaks: int
    min_size: int
    peak_method: int
    peak_parameter: float
    sort_method: int
    options: int
    centre_method: int
    centre_parameter: float

    def __post_init__(self) -> None:
        _check_index("background_method", self.background_method, BACKGROUND_METHODS)
        _check_index("search_method", self.search_method, SEARCH_METHODS)
        _check_index("peak_method", self.peak_method, PEAK_METHODS)
        _check_index("sort_method", self.sort_method, SORT_INDEX_METHODS)
        _check_index("centre_method", self.centre_method, CENTRE_METHODS)

        flags = self.options & _KNOWN_FLAGS
        if not flags & OPTION_MINIMUM_ABOVE_SADDLE:
            flags &= ~OPTION_CONTIGUOUS_ABOVE_SADDLE
        if (flags & STATS_MASK) == STATS_MASK or not background_method_has_statistics_mode(
            self.background_method
        ):
            flags &= ~STATS_MASK

        normalised = {
            "blur": float(self.blur),
            "background_parameter": float(self.background_parameter)
            if background_method_has_parameter(self.background_method)
            else 0.0,
            "threshold_method": self.threshold_method
            if self.background_method == BACKGROUND_AUTO_THRESHOLD
            else "",
            "search_parameter": float(self.search_parameter)
            if search_method_has_parameter(self.search_method)
            else 0.0,
            "peak_parameter": float(self.peak_parameter),
            "centre_parameter": float(self.centre_parameter)
            if centre_method_has_parameter(self.centre_method)
            else 0.0,
            "max_peaks": int(self.max_peaks),
            "min_size": int(self.min_size),
            "options": flags,
        }
        for name, value in normalised.items():
            object.__setattr__(self, name, value)

    @property
    def statistics_mode(self) -> str:
        return statistics_mode_from_flags(self.options)

    @property
    def minimum_above_saddle(self) -> bool:
        return bool(self.options & OPTION_MINIMUM_ABOVE_SADDLE)

    @property
    def connected_above_saddle(self) -> bool:
        return bool(self.options & OPTION_CONTIGUOUS_ABOVE_SADDLE)

    @cached_property
    def _text(self) -> str:
        return FIELD_SEPARATOR.join(self._fields())

    def to_string(self) -> str:
        """Return the canonical parameter text (computed once)."""
        return self._text

    def __str__(self) -> str:
        return self.to_string()

    def _fields(self) -> List[str]:
        background = BACKGROUND_METHODS[self.background_method]
        if background_method_has_statistics_mode(self.background_method):
            background += f" ({self.statistics_mode})"
        background += PARAMETER_SEPARATOR
        if background_method_has_parameter(self.background_method):
            background += format_number(self.background_parameter)
        else:
            background += self.threshold_method

        min_size = str(self.min_size)
        if self.minimum_above_saddle:
            min_size += SADDLE_SUFFIX
            if self.connected_above_saddle:
                min_size += CONNECTED_SUFFIX

        search = SEARCH_METHODS[self.search_method]
        if search_method_has_parameter(self.search_method):
            search += PARAMETER_SEPARATOR + format_number(self.search_parameter)

        peak = (
            PEAK_METHODS[self.peak_method]
            + PARAMETER_SEPARATOR
            + format_number(self.peak_parameter)
        )

        centre = CENTRE_METHODS[self.centre_method]
        if centre_method_has_parameter(self.centre_method):
            centre += PARAMETER_SEPARATOR + format_number(self.centre_parameter)

        return [
            format_number(self.blur),
            background,
            str(self.max_peaks),
            min_size,
            search,
            peak,
            SORT_INDEX_METHODS[self.sort_method],
            centre,
        ]

    @classmethod
    def parse(cls, text: str) -> "Options":
        """Rebuild Options from canonical parameter text.

        Raises:
            FociParseError: If the text is not in canonical form.
        """
        fields = text.split(FIELD_SEPARATOR)
        if len(fields) != FIELD_COUNT:
            raise FociParseError(
                "Parameter text must have 8 tab-separated fields",
                parameter_name="parameters",
                provided_value=text,
                expected=f"{FIELD_COUNT} fields",
            )
        try:
            return cls._parse_fields(fields)
        except (ValueError, IndexError) as exc:
            raise FociParseError(
                "Invalid parameter text",
                parameter_name="parameters",
                provided_value=text,
                original_error=exc,
            ) from exc

    @classmethod
    def _parse_fields(cls, fields: List[str]) -> "Options":
        blur_text, background, max_text, min_text, search, peak, sort, centre = fields

        head, sep, tail = background.partition(PARAMETER_SEPARATOR)
        if not sep:
            raise ValueError(f"Missing background separator in {background!r}")
        name, _, mode = head.partition(" (")
        background_method = _lookup(BACKGROUND_METHODS, name)
        flags = 0
        if background_method_has_statistics_mode(background_method):
            if not mode.endswith(")"):
                raise ValueError(f"Missing statistics mode in {background!r}")
            _lookup(STATISTICS_MODES, mode[:-1])
            flags |= statistics_mode_to_flags(mode[:-1])
        background_parameter = 0.0
        threshold_method = ""
        if background_method_has_parameter(background_method):
            background_parameter = float(tail)
        else:
            threshold_method = tail

        min_size_text = min_text
        if min_size_text.endswith(SADDLE_SUFFIX + CONNECTED_SUFFIX):
            flags |= OPTION_MINIMUM_ABOVE_SADDLE | OPTION_CONTIGUOUS_ABOVE_SADDLE
            min_size_text = min_size_text[: -len(SADDLE_SUFFIX + CONNECTED_SUFFIX)]
        elif min_size_text.endswith(SADDLE_SUFFIX):
            flags |= OPTION_MINIMUM_ABOVE_SADDLE
            min_size_text = min_size_text[: -len(SADDLE_SUFFIX)]

        search_name, _, search_value = search.partition(PARAMETER_SEPARATOR)
        search_method = _lookup(SEARCH_METHODS, search_name)
        search_parameter = (
            float(search_value) if search_method_has_parameter(search_method) else 0.0
        )

        peak_name, _, peak_value = peak.partition(PARAMETER_SEPARATOR)
        peak_method = _lookup(PEAK_METHODS, peak_name)

        centre_name, _, centre_value = centre.partition(PARAMETER_SEPARATOR)
        centre_method = _lookup(CENTRE_METHODS, centre_name)
        centre_parameter = (
            float(centre_value) if centre_method_has_parameter(centre_method) else 0.0
        )

        return cls(
            blur=float(blur_text),
            background_method=background_method,
            background_parameter=background_parameter,
            threshold_method=threshold_method,
            search_method=search_method,
            search_parameter=search_parameter,
            max_peaks=int(max_text),
            min_size=int(min_size_text),
            peak_method=peak_method,
            peak_parameter=float(peak_value),
            sort_method=_lookup(SORT_INDEX_METHODS, sort),
            options=flags,
            centre_method=centre_method,
            centre_parameter=centre_parameter,
        )


def _lookup(table: List[str], name: str) -> int:
    try:
        return table.index(name)
    except ValueError:
        raise ValueError(f"Unknown method name {name!r}") from None
