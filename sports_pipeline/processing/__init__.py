"""
Processing layer: turns collected payloads into stored entities.
"""

from sports_pipeline.processing.interfaces import (
    EventSink,
    NormalizationError,
    ProcessingError,
)
from sports_pipeline.processing.normalizers import (
    NORMALIZERS,
    PAYLOAD_FIELDS,
    extract_entities,
    normalize,
)
from sports_pipeline.processing.router import UPDATE_TYPES, ProcessingRouter

__all__ = [
    "EventSink",
    "NormalizationError",
    "ProcessingError",
    "NORMALIZERS",
    "PAYLOAD_FIELDS",
    "extract_entities",
    "normalize",
    "ProcessingRouter",
    "UPDATE_TYPES",
]
