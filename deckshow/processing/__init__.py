"""Processing backends for slide ingestion."""

from ..errors import SlideConversionDependencyError, SlideConversionError
from .slides import PyMuPDFRasterizationPipeline

__all__ = [
    "PyMuPDFRasterizationPipeline",
    "SlideConversionDependencyError",
    "SlideConversionError",
]
