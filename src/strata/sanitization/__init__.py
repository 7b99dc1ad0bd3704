"""Sanitization barrier and toxic-data detector registry."""

from .barrier import SanitizationBarrier, SanitizationResult
from .detectors import (
    Detector,
    DetectorRegistry,
    MaskingPolicy,
    default_registry,
    field_name_matcher,
    value_matcher,
)

__all__ = [
    "SanitizationBarrier",
    "SanitizationResult",
    "Detector",
    "DetectorRegistry",
    "MaskingPolicy",
    "default_registry",
    "field_name_matcher",
    "value_matcher",
]
