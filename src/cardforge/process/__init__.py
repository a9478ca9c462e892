"""
Image Transform Module

Crops, resizes and frames generated card artwork.
"""

from .models import BatchItem, CropRegion, ImageInfo, ProcessOptions, ValidationReport
from .processor import ImageDimensionError, ImageProcessor, calculate_crop_region

__all__ = [
    "BatchItem",
    "CropRegion",
    "ImageDimensionError",
    "ImageInfo",
    "ImageProcessor",
    "ProcessOptions",
    "ValidationReport",
    "calculate_crop_region",
]
