#!/usr/bin/env python
#
# FindFoci Optimiser - Stages Package
# © 2025 FindFoci Optimiser Authors
#

"""
Maxima-detection pipelines driven by the optimiser.

Recommended usage::

    from foci_core.stages import PipelineRegistry

    pipeline = PipelineRegistry.create("simple")

Third-party pipelines register under the ``foci_core.pipelines`` entry
point group.
"""

from .base import BaseMaximaPipeline, Point
from .registry import PLUGIN_GROUP, PipelineRegistry
from .simple import SimpleMaximaPipeline

__all__ = [
    "BaseMaximaPipeline",
    "PLUGIN_GROUP",
    "PipelineRegistry",
    "Point",
    "SimpleMaximaPipeline",
]
