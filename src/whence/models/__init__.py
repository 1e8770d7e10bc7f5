"""Data modely pro Whence."""

from whence.models.location import Sample, PathPoint, BBox, LocationSource, PhotoLocation, GeocodedPlace
from whence.models.path import Path, StationaryCluster
from whence.models.asset import Asset
from whence.models.job import (
    JobStatus,
    ImportConfig,
    ImportJob,
    ImportProgress,
    DevicePreview,
    PreviewProgress,
)
from whence.models.timeline import TimelineEntry, TimelinePhoto

__all__ = [
    "Sample",
    "PathPoint",
    "BBox",
    "LocationSource",
    "PhotoLocation",
    "GeocodedPlace",
    "Path",
    "StationaryCluster",
    "Asset",
    "JobStatus",
    "ImportConfig",
    "ImportJob",
    "ImportProgress",
    "DevicePreview",
    "PreviewProgress",
    "TimelineEntry",
    "TimelinePhoto",
]
