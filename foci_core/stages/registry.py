#!/usr/bin/env python
#
# FindFoci Optimiser - Pipeline Registry
# © 2025 FindFoci Optimiser Authors
#

"""
Registry for maxima-detection pipelines.

Pipelines come from three places, in priority order: runtime registration
(tests and embedding applications), the ``foci_core.pipelines`` entry point
group, and the built-in pipelines shipped with this package.
"""

from __future__ import annotations

import logging
import warnings
from importlib import metadata
from typing import Any, Dict, Iterable, List, Optional, Type

from ..exceptions import FociConfigError
from .base import BaseMaximaPipeline, _is_valid_pipeline

# Module-level logger for registry operations
logger = logging.getLogger(__name__)

PLUGIN_GROUP = "foci_core.pipelines"


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    """Iterate over entry points for the plugin group."""
    return metadata.entry_points().select(group=PLUGIN_GROUP)


def _builtin_pipelines() -> Dict[str, Type[BaseMaximaPipeline]]:
    from .simple import SimpleMaximaPipeline

    return {SimpleMaximaPipeline.plugin_name: SimpleMaximaPipeline}


class PipelineRegistry:
    """Pipeline registry with discovery, registration, and instantiation.

    Example:
        >>> PipelineRegistry.register(MyPipeline)
        >>> pipeline = PipelineRegistry.create("mine")
        >>> PipelineRegistry.unregister("mine")
    """

    # Discovered pipelines (built-ins + entry points), lazily initialized
    _discovered: Optional[Dict[str, Type[BaseMaximaPipeline]]] = None

    # Runtime-registered pipelines
    _custom: Dict[str, Type[BaseMaximaPipeline]] = {}

    @classmethod
    def discover(cls, force: bool = False) -> Dict[str, Type[BaseMaximaPipeline]]:
        """Discover available pipelines (cached, lazy)."""
        if cls._discovered is None or force:
            registry = _builtin_pipelines()
            for ep in sorted(_iter_entry_points(), key=lambda e: e.name):
                try:
                    pipeline_cls = ep.load()
                except Exception as exc:  # pragma: no cover
                    warnings.warn(
                        f"Failed to load pipeline entry point '{ep.name}' "
                        f"from {ep.value}: {exc}",
                        stacklevel=2,
                    )
                    continue
                if not _is_valid_pipeline(pipeline_cls):
                    logger.warning(
                        "Ignoring entry point %s: %r is not a BaseMaximaPipeline",
                        ep.name,
                        pipeline_cls,
                    )
                    continue
                registry[pipeline_cls.plugin_name.lower()] = pipeline_cls
            cls._discovered = registry
            logger.debug(
                "PipelineRegistry.discover: found %d pipeline(s): %s",
                len(registry),
                ", ".join(sorted(registry)) or "none",
            )
        return cls._discovered

    @classmethod
    def list_available(cls) -> List[str]:
        return sorted(set(cls._custom) | set(cls.discover()))

    @classmethod
    def get(cls, name: str) -> Type[BaseMaximaPipeline]:
        """Get pipeline class by name."""
        name_lower = name.lower()
        if name_lower in cls._custom:
            return cls._custom[name_lower]
        discovered = cls.discover()
        if name_lower in discovered:
            return discovered[name_lower]

        available = ", ".join(cls.list_available()) or "none"
        raise FociConfigError(
            f"Unknown pipeline '{name}'. Available: {available}",
            context={"pipeline": name},
        )

    @classmethod
    def register(cls, pipeline_cls: Type[BaseMaximaPipeline]) -> None:
        """Register a pipeline class at runtime."""
        if not _is_valid_pipeline(pipeline_cls):
            raise ValueError(
                f"Invalid pipeline class: {pipeline_cls}. "
                "Must inherit from BaseMaximaPipeline and have non-empty plugin_name."
            )
        name_lower = pipeline_cls.plugin_name.lower()
        if name_lower in cls._custom:
            logger.warning(
                "PipelineRegistry.register: overwriting runtime-registered pipeline '%s'",
                name_lower,
            )
        cls._custom[name_lower] = pipeline_cls
        logger.info(
            "PipelineRegistry.register: registered pipeline '%s' (%s.%s)",
            name_lower,
            pipeline_cls.__module__,
            pipeline_cls.__name__,
        )

    @classmethod
    def unregister(cls, name: str) -> bool:
        """Unregister a runtime-registered pipeline by name."""
        return cls._custom.pop(name.lower(), None) is not None

    @classmethod
    def _reset(cls) -> None:
        """Clear discovered and runtime-registered pipelines (tests only)."""
        cls._discovered = None
        cls._custom = {}

    @classmethod
    def create(
        cls, name: str, config: Optional[Dict[str, Any]] = None
    ) -> BaseMaximaPipeline:
        """Instantiate a pipeline, passing ``config`` as keyword arguments."""
        pipeline_cls = cls.get(name)
        try:
            return pipeline_cls(**(config or {}))
        except TypeError as exc:
            raise FociConfigError(
                f"Invalid configuration for pipeline '{name}'",
                original_error=exc,
                context={"pipeline": name},
            ) from exc
