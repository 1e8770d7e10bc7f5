"""Služby pro Whence."""

from whence.services.path_indexer import PathIndexer, compute_paths
from whence.services.simplifier import PathSimplifier, SimplifyOptions
from whence.services.timeline_builder import TimelineBuilder
from whence.services.timeline_loader import TimelineLoader
from whence.services.geocoder import Geocoder
from whence.services.immich import ImmichClient
from whence.services.photo_scanner import LocalPhotoSource
from whence.services.backfill import BackfillJobManager, ProgressHub

__all__ = [
    "PathIndexer",
    "compute_paths",
    "PathSimplifier",
    "SimplifyOptions",
    "TimelineBuilder",
    "TimelineLoader",
    "Geocoder",
    "ImmichClient",
    "LocalPhotoSource",
    "BackfillJobManager",
    "ProgressHub",
]
