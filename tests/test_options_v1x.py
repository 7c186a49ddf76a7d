#!/usr/bin/env python
#
# FindFoci Optimiser - Options Tests
# © 2025 FindFoci Optimiser Authors
#

"""
Unit tests for the canonical parameter text of Options.
"""

import os
import sys
import unittest

# Add project root directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from foci_core.exceptions import FociParseError, FociValidationError  # noqa: E402
from foci_core.options import FIELD_COUNT, Options, format_number  # noqa: E402
from foci_core.schema import (  # noqa: E402
    BACKGROUND_AUTO_THRESHOLD,
    BACKGROUND_STD_DEV_ABOVE_MEAN,
    CENTRE_MAX_VALUE_SEARCH,
    CENTRE_OF_MASS_SEARCH,
    OPTION_CONTIGUOUS_ABOVE_SADDLE,
    OPTION_MINIMUM_ABOVE_SADDLE,
    OPTION_STATS_INSIDE,
    OPTION_STATS_OUTSIDE,
    PEAK_RELATIVE_ABOVE_BACKGROUND,
    SEARCH_ABOVE_BACKGROUND,
    SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND,
)


def make_options(**overrides):
    values = dict(
        blur=0.5,
        background_method=BACKGROUND_STD_DEV_ABOVE_MEAN,
        background_parameter=2.5,
        threshold_method="Otsu",
        search_method=SEARCH_FRACTION_OF_PEAK_MINUS_BACKGROUND,
        search_parameter=0.3,
        max_peaks=50,
        min_size=3,
        peak_method=PEAK_RELATIVE_ABOVE_BACKGROUND,
        peak_parameter=0.1,
        sort_method=1,
        options=OPTION_MINIMUM_ABOVE_SADDLE | OPTION_STATS_INSIDE,
        centre_method=CENTRE_MAX_VALUE_SEARCH,
        centre_parameter=5,
    )
    values.update(overrides)
    return Options(**values)


class TestOptionsText(unittest.TestCase):
    def test_canonical_text(self):
        expected = "\t".join(
            [
                "0.5",
                "Std.Dev above mean (Inside) : 2.5",
                "50",
                "3 >saddle",
                "Fraction of peak - background : 0.3",
                "Relative above background : 0.1",
                "Total intensity",
                "Max value (search image)",
            ]
        )
        self.assertEqual(make_options().to_string(), expected)
        self.assertEqual(str(make_options()), expected)

    def test_auto_threshold_shows_method_name(self):
        options = make_options(
            background_method=BACKGROUND_AUTO_THRESHOLD,
            options=OPTION_MINIMUM_ABOVE_SADDLE | OPTION_CONTIGUOUS_ABOVE_SADDLE,
            search_method=SEARCH_ABOVE_BACKGROUND,
            centre_method=CENTRE_OF_MASS_SEARCH,
            centre_parameter=2,
        )
        fields = options.to_string().split("\t")
        self.assertEqual(fields[1], "Auto threshold (Both) : Otsu")
        self.assertEqual(fields[3], "3 >saddle conn")
        self.assertEqual(fields[4], "Above background")
        self.assertEqual(fields[7], "Centre of mass (search image) : 2.0")

    def test_round_trip(self):
        options = make_options(
            background_method=BACKGROUND_AUTO_THRESHOLD,
            options=OPTION_STATS_OUTSIDE,
            centre_method=CENTRE_OF_MASS_SEARCH,
            centre_parameter=3,
        )
        parsed = Options.parse(options.to_string())
        self.assertEqual(parsed, options)
        self.assertEqual(parsed.to_string(), options.to_string())

    def test_format_number(self):
        self.assertEqual(format_number(1), "1.0")
        self.assertEqual(format_number(0.1), "0.1")


class TestOptionsNormalisation(unittest.TestCase):
    def test_unused_fields_are_cleared(self):
        options = make_options(centre_parameter=7)
        self.assertEqual(options.threshold_method, "")
        self.assertEqual(options.centre_parameter, 0.0)

    def test_connected_requires_above_saddle(self):
        options = make_options(options=OPTION_CONTIGUOUS_ABOVE_SADDLE)
        self.assertFalse(options.connected_above_saddle)
        self.assertEqual(options.options, 0)

    def test_both_statistics_bits_mean_both(self):
        options = make_options(options=OPTION_STATS_INSIDE | OPTION_STATS_OUTSIDE)
        self.assertEqual(options.statistics_mode, "Both")

    def test_equal_options_hash_equal(self):
        a = make_options(threshold_method="Otsu")
        b = make_options(threshold_method="Triangle")
        self.assertEqual(a, b)
        self.assertEqual(hash(a), hash(b))

    def test_invalid_method_index(self):
        with self.assertRaises(FociValidationError):
            make_options(search_method=9)


class TestOptionsParseErrors(unittest.TestCase):
    def test_wrong_field_count(self):
        with self.assertRaises(FociParseError) as ctx:
            Options.parse("0.5\tMean : Otsu")
        self.assertIn(str(FIELD_COUNT), ctx.exception.expected)

    def test_unknown_method_name(self):
        fields = make_options().to_string().split("\t")
        fields[6] = "Brightness"
        with self.assertRaises(FociParseError):
            Options.parse("\t".join(fields))

    def test_bad_number(self):
        fields = make_options().to_string().split("\t")
        fields[2] = "many"
        with self.assertRaises(FociParseError):
            Options.parse("\t".join(fields))


if __name__ == "__main__":
    unittest.main()
