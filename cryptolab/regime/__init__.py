"""Market regime segmentation."""

from cryptolab.regime.segmenter import (
    RegimeSegment,
    RegimeSegmenter,
    RegimeSegmenterConfig,
    RegimeType,
)

__all__ = [
    "RegimeSegment",
    "RegimeSegmenter",
    "RegimeSegmenterConfig",
    "RegimeType",
]
