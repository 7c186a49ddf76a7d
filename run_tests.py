#!/usr/bin/env python3
"""
Version-aware test runner for optimise_foci_cli
Runs the test suite matching the major version number
"""

import sys
import os
import re
import unittest

# Add project root directory to path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

SCHEMA_PATH = os.path.join("foci_core", "schema.py")


def get_version():
    """Extract version from foci_core/schema.py"""
    try:
        with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
            content = f.read()
            match = re.search(r'VERSION\s*=\s*["\']([^"\']+)["\']', content)
            if match:
                return match.group(1)
    except FileNotFoundError:
        print(f"Error: {SCHEMA_PATH} not found")
        sys.exit(1)

    print(f"Error: Could not find VERSION in {SCHEMA_PATH}")
    sys.exit(1)


def get_major_version(version_string):
    """Extract major version number from version string (e.g., '1.4.2' -> 1)"""
    match = re.match(r"^(\d+)\.", version_string)
    if match:
        return int(match.group(1))
    return None


def run_tests_for_version(major_version):
    """Run appropriate tests based on major version"""

    if major_version == 1:
        print("Running tests for version 1.x")
        loader = unittest.TestLoader()
        suite = loader.discover("tests", pattern="test_*.py")

        runner = unittest.TextTestRunner(verbosity=2)
        result = runner.run(suite)

        return 0 if result.wasSuccessful() else 1

    print(f"Error: Unsupported major version {major_version}")
    return 1


def main():
    version = get_version()
    print(f"Detected version: {version}")

    major_version = get_major_version(version)
    if major_version is None:
        print(f"Error: Could not parse major version from '{version}'")
        sys.exit(1)

    print(f"Major version: {major_version}")

    exit_code = run_tests_for_version(major_version)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
