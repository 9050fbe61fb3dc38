"""Extractors domain: the extraction contract and the reference strategies."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flowmap.extractors.base import (
    ElementBuilder,
    ExtractionResult,
    Extractor,
    ExtractorRegistry,
    derived_output_label,
)
from flowmap.extractors.manifest import ManifestExtractor
from flowmap.extractors.python import PythonExtractor
from flowmap.extractors.tsx import TsxExtractor
from flowmap.graph.model import DEFAULT_SCOPE_TAG

if TYPE_CHECKING:
    from collections.abc import Mapping


def default_registry(
    *,
    categories: Mapping[str, str] | None = None,
    scope_tag: str = DEFAULT_SCOPE_TAG,
) -> ExtractorRegistry:
    """Registry with every bundled strategy."""
    return ExtractorRegistry(
        [
            ManifestExtractor(scope_tag),
            PythonExtractor(scope_tag),
            TsxExtractor(scope_tag),
        ],
        categories=categories,
    )


__all__ = [
    "ElementBuilder",
    "ExtractionResult",
    "Extractor",
    "ExtractorRegistry",
    "ManifestExtractor",
    "PythonExtractor",
    "TsxExtractor",
    "default_registry",
    "derived_output_label",
]
