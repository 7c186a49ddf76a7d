#!/usr/bin/env python
#
# FindFoci Optimiser - Maxima Pipeline Base Class
# © 2025 FindFoci Optimiser Authors
#

"""
Abstract base class for staged maxima-detection pipelines.
Provides a plugin interface so the optimiser can drive any implementation.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np


logger = logging.getLogger(__name__)

Point = Tuple[float, float, float]


class BaseMaximaPipeline(ABC):
    """
    Abstract base class for staged maxima-detection algorithms.

    Each stage returns an opaque handle consumed by the next stage, or
    ``None`` when it cannot produce a result (the optimiser then abandons
    the image). Stages must not mutate the handles they receive except the
    init handle, which the optimiser clones into a per-branch buffer with
    :meth:`clone` before every ``search`` and ``merge_final`` call.

    Attributes:
        plugin_name: Unique identifier used by the registry
        name: Human-readable name of the pipeline
        version: Version string of the pipeline
    """

    plugin_name: str = ""  # Must be overridden by subclasses
    name: str = "BaseMaximaPipeline"
    version: str = "1.0.0"

    def blur(self, image: np.ndarray, sigma: float) -> Optional[np.ndarray]:
        """Gaussian blur used to build the search image.

        A sigma of zero returns the image unchanged. Stacks (z, y, x) are
        blurred slice by slice.
        """
        if sigma <= 0:
            return image
        data = np.asarray(image, dtype=np.float32)
        if data.ndim == 2:
            return cv2.GaussianBlur(data, (0, 0), sigmaX=sigma, sigmaY=sigma)
        return np.stack(
            [cv2.GaussianBlur(s, (0, 0), sigmaX=sigma, sigmaY=sigma) for s in data]
        )

    @abstractmethod
    def init(
        self,
        image: np.ndarray,
        blurred: np.ndarray,
        mask: Optional[np.ndarray],
        background_method: int,
        threshold_method: str,
        statistics_mode: int,
    ) -> Any:
        """Compute image statistics and candidate maxima."""

    @abstractmethod
    def search(
        self,
        init: Any,
        background_method: int,
        background_parameter: float,
        search_method: int,
        search_parameter: float,
    ) -> Any:
        """Find the region of every maximum above the background."""

    @abstractmethod
    def merge_peak(
        self, init: Any, search: Any, peak_method: int, peak_parameter: float
    ) -> Any:
        """Merge maxima whose height above the saddle is too small."""

    @abstractmethod
    def merge_size(self, init: Any, merge: Any, min_size: int) -> Any:
        """Merge maxima whose region is smaller than ``min_size``."""

    @abstractmethod
    def merge_final(
        self, init: Any, merge: Any, min_size: int, options: int, blur: float
    ) -> Any:
        """Apply the saddle options and finalise the merged regions."""

    @abstractmethod
    def results(
        self,
        init: Any,
        merge: Any,
        max_peaks: int,
        sort_method: int,
        centre_method: int,
        centre_parameter: float,
    ) -> Optional[Sequence[Point]]:
        """Return up to ``max_peaks`` (x, y, z) maxima positions."""

    def clone(self, handle: Any, into: Any = None) -> Any:
        """Copy an init handle for one branch of the sweep.

        ``into`` is the buffer filled by the previous call at the same depth;
        implementations may reuse it instead of allocating. The default
        makes a deep copy.
        """
        return copy.deepcopy(handle)

    def get_info(self) -> Dict[str, str]:
        return {
            "plugin_name": self.plugin_name,
            "name": self.name,
            "version": self.version,
            "class": self.__class__.__name__,
        }


def _is_valid_pipeline(pipeline_cls: Any) -> bool:
    """Return True for concrete BaseMaximaPipeline subclasses with a plugin name."""
    try:
        return (
            issubclass(pipeline_cls, BaseMaximaPipeline)
            and pipeline_cls is not BaseMaximaPipeline
            and bool(getattr(pipeline_cls, "plugin_name", ""))
        )
    except TypeError:
        return False
