"""
Remote Images Module

Downloads images referenced by content records and rewrites the records
to point at the local copies.

Features:
- Field paths that pass through arrays at any depth
- URL normalization and local-source detection
- Content-type based extension guessing
- Deterministic, cache-aware file names
- Streamed downloads with cleanup of partial files
"""

from .config import FetchConfig, UrlNormalization
from .content_store import Collection, ContentStore
from .fetcher import FetchOutcome, HttpClient, ImageFetcher, LocalFileSystem, OutcomeKind
from .path_resolver import traverse_and_replace
from .plugin import RemoteImagePlugin
from .routes_fastapi import router

__all__ = [
    "router",
    "FetchConfig",
    "UrlNormalization",
    "Collection",
    "ContentStore",
    "FetchOutcome",
    "HttpClient",
    "ImageFetcher",
    "LocalFileSystem",
    "OutcomeKind",
    "traverse_and_replace",
    "RemoteImagePlugin",
]
