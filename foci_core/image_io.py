#!/usr/bin/env python
#
# FindFoci Optimiser - Image I/O
# © 2025 FindFoci Optimiser Authors
#

"""
Image, mask and reference point loading.
"""

import logging
import os
import re
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .exceptions import FociLoadError
from .schema import PARAMS_SUFFIX, POINTS_EXTENSIONS, RESULTS_SUFFIX

# Module-level logger
logger = logging.getLogger(__name__)

Point = Tuple[float, float, float]

MASK_INFIX = ".mask"
MAX_POINT_ERRORS = 5
_POINT_SPLIT = re.compile(r"[, \t]+")


def short_title(name: str) -> str:
    """File name without directory, anything after a space, or extension."""
    title = os.path.basename(name)
    index = title.find(" ")
    if index > -1:
        title = title[:index]
    index = title.rfind(".")
    if index > 0:
        title = title[:index]
    return title


def list_input_files(directory: str) -> List[str]:
    """Sorted file names of a batch directory.

    Reference point files, masks and optimiser outputs are left out; any
    other file is a candidate image and is skipped later if it cannot be
    read.
    """
    if not os.path.isdir(directory):
        raise FociLoadError("Input directory not found", filepath=directory)
    names = []
    for name in sorted(os.listdir(directory)):
        if not os.path.isfile(os.path.join(directory, name)):
            continue
        lowered = name.lower()
        if os.path.splitext(lowered)[1] in POINTS_EXTENSIONS:
            continue
        if lowered.endswith((RESULTS_SUFFIX, PARAMS_SUFFIX)):
            continue
        if MASK_INFIX + "." in lowered:
            continue
        names.append(name)
    logger.info("Found %d input files in %s", len(names), directory)
    return names


def load_image(path: str) -> np.ndarray:
    """Read a single-channel image.

    Colour images are converted to greyscale.

    Raises:
        FociLoadError: If the file is missing or is not a readable image.
    """
    if not os.path.isfile(path):
        raise FociLoadError("File not found", filepath=path)
    image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise FociLoadError(
            "Cannot read image",
            filepath=path,
            context={"error_category": "unsupported_format"},
        )
    if image.ndim == 3:
        code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
        image = cv2.cvtColor(image, code)
    logger.debug("Loaded image %s: shape=%s dtype=%s", path, image.shape, image.dtype)
    return image


def find_mask(
    directory: str, filename: str, mask_directory: Optional[str] = None
) -> Optional[str]:
    """Locate the mask for an image.

    Checked in order: the same file name in ``mask_directory``, then
    ``<name>.mask.<ext>`` beside the image, then in ``mask_directory``.
    """
    prefix, ext = os.path.splitext(filename)
    if not prefix:
        return None
    if mask_directory:
        candidate = os.path.join(mask_directory, filename)
        if os.path.isfile(candidate):
            return candidate
    mask_name = prefix + MASK_INFIX + ext
    for folder in (directory, mask_directory):
        if folder:
            candidate = os.path.join(folder, mask_name)
            if os.path.isfile(candidate):
                return candidate
    return None


def load_points(path: str) -> Optional[List[Point]]:
    """Read reference points from a text file.

    Lines are split on commas, spaces or tabs; ``#`` lines and lines that
    do not start with two numbers (such as a header) are skipped.
    Coordinates are truncated to whole pixels. Returns None when the file
    is missing or holds too many malformed lines.
    """
    if not os.path.isfile(path):
        return None
    points: List[Point] = []
    errors = 0
    try:
        with open(path, encoding="utf-8") as fp:
            for line in fp:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                fields = _POINT_SPLIT.split(line)
                if len(fields) < 2:
                    continue
                try:
                    x = int(float(fields[0]))
                    y = int(float(fields[1]))
                    z = int(float(fields[2])) if len(fields) > 2 else 0
                except ValueError:
                    errors += 1
                    if errors == MAX_POINT_ERRORS:
                        logger.warning("Too many invalid lines in points file %s", path)
                        return None
                    continue
                points.append((float(x), float(y), float(z)))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read points file %s: %s", path, exc)
        return None
    return points


def find_points(image_path: str) -> Optional[List[Point]]:
    """Load the points file stored beside an image (``.csv``, ``.xyz`` or ``.txt``)."""
    base = os.path.splitext(image_path)[0]
    for suffix in POINTS_EXTENSIONS:
        points = load_points(base + suffix)
        if points is not None:
            logger.debug("Loaded %d reference points from %s", len(points), base + suffix)
            return points
    return None


def points_in_mask(
    points: Sequence[Point], mask: Optional[np.ndarray]
) -> List[Point]:
    """Keep points on a non-zero mask pixel (all points when there is no mask)."""
    if mask is None:
        return list(points)
    height, width = mask.shape[-2:]
    plane = mask if mask.ndim == 2 else mask[0]
    kept = []
    for point in points:
        x, y = int(point[0]), int(point[1])
        if 0 <= x < width and 0 <= y < height and plane[y, x] != 0:
            kept.append(point)
    return kept
