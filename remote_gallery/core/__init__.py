"""
Backend-independent building blocks: paths, classification, caching,
request coalescing and thumbnail rendering.
"""

from remote_gallery.core.blocking import AbortFlag, Aborted, run_abortable
from remote_gallery.core.cache import ThumbnailCache
from remote_gallery.core.classifier import ContentClassifier, is_thumbnailable
from remote_gallery.core.paths import PathResolver
from remote_gallery.core.single_flight import SingleFlight
from remote_gallery.core.thumbnails import render_thumbnail

__all__ = [
    "AbortFlag",
    "Aborted",
    "ContentClassifier",
    "PathResolver",
    "SingleFlight",
    "ThumbnailCache",
    "is_thumbnailable",
    "render_thumbnail",
    "run_abortable",
]
