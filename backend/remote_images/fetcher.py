"""
Image Fetcher Core Logic

Handles:
- Normalizing image sources and skipping local ones
- Guessing missing file extensions from a HEAD request
- Deterministic target file names (SHA-256 of the URL, or the original name)
- Cache-aware streamed downloads with cleanup of partial files
"""

import asyncio
import glob
import hashlib
import logging
import os
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Dict, List, Optional, Sequence, Tuple

import httpx

from .config import FetchConfig
from .exceptions import DownloadError, MalformedSourceError, MetadataFetchError
from .url_utils import (
    extension_for_content_type,
    is_local_source,
    normalize_url,
    split_url_path,
)

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Downloads are written here first and renamed into place when complete
PARTIAL_SUFFIX = ".part"

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
}


class OutcomeKind(str, Enum):
    """How a single image source was resolved."""
    LOCAL = "local"              # already local, left as normalized
    CACHED = "cached"            # target file existed, no network I/O
    DOWNLOADED = "downloaded"    # fetched and written to disk
    FALLBACK = "fallback"        # failed, fallback image or source returned
    UNCHANGED = "unchanged"      # could not be normalized, returned as-is


@dataclass
class FetchOutcome:
    """Result of resolving one image source."""
    source: Any
    value: Any
    kind: OutcomeKind
    error: Optional[str] = None


@dataclass
class HeadMetadata:
    content_type: Optional[str]


# ============================================
# Collaborators
# ============================================


class HttpClient:
    """
    Thin wrapper around httpx.AsyncClient exposing the two requests
    the fetcher needs.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
        )

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self.client.aclose()

    async def head_metadata(self, url: str) -> HeadMetadata:
        """Issue a HEAD request; raises httpx errors on failure."""
        response = await self.client.head(url)
        response.raise_for_status()
        return HeadMetadata(content_type=response.headers.get("content-type"))

    async def stream_body(self, url: str) -> AsyncIterator[bytes]:
        """Yield the response body in chunks without buffering it."""
        async with self.client.stream("GET", url) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                yield chunk


class LocalFileSystem:
    """Filesystem operations used by the fetcher."""

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(path.is_file)

    async def ensure_file(self, path: Path) -> None:
        """Create parent directories and an empty file."""
        def _ensure():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=True)

        await asyncio.to_thread(_ensure)

    async def find_existing(self, folder: Path, stem: str) -> Optional[Path]:
        """First file named <stem>.<anything> in folder, if any."""
        def _find():
            if not folder.is_dir():
                return None
            matches = sorted(
                p for p in folder.glob(f"{glob.escape(stem)}.*")
                if p.is_file() and not p.name.endswith(PARTIAL_SUFFIX)
            )
            return matches[0] if matches else None

        return await asyncio.to_thread(_find)

    def open_write_sink(self, path: Path) -> BinaryIO:
        return open(path, "wb")

    async def replace(self, source: Path, target: Path) -> None:
        await asyncio.to_thread(os.replace, source, target)

    async def remove(self, path: Path) -> None:
        await asyncio.to_thread(path.unlink, True)


# ============================================
# Fetcher
# ============================================


class ImageFetcher:
    """
    Resolves image sources to local files.

    Usage:
        async with ImageFetcher(config) as fetcher:
            outcomes = await fetcher.fetch_all(urls)
    """

    def __init__(
        self,
        config: FetchConfig,
        http: Optional[HttpClient] = None,
        fs: Optional[LocalFileSystem] = None,
    ):
        self.config = config
        self.http = http or HttpClient(timeout=config.timeout)
        self.fs = fs or LocalFileSystem()
        self.stats: Counter = Counter()

        # One pipeline per target (folder / stem): lock and number of users
        self._target_locks: Dict[Path, List[Any]] = {}

    async def close(self):
        await self.http.close()

    async def __aenter__(self) -> "ImageFetcher":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def transform(self, values: Sequence[Any], is_array: bool = False) -> List[Any]:
        """Leaf transform for the path resolver: sources in, new values out."""
        outcomes = await self.fetch_all(values)
        return [outcome.value for outcome in outcomes]

    async def fetch_all(self, sources: Sequence[Any]) -> List[FetchOutcome]:
        """
        Resolve every source concurrently.

        Returns one outcome per source, in input order. A failure in one
        source never affects the others.
        """
        sources = list(sources)
        if not sources:
            return []

        results = await asyncio.gather(
            *(self.fetch_one(source) for source in sources),
            return_exceptions=True,
        )

        outcomes = []
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(f"[ImageFetcher] Unexpected error for {source!r}: {result}")
                result = self._fallback(source, self._normalize_or_keep(source), error=str(result))
            outcomes.append(result)

        for outcome in outcomes:
            self.stats[outcome.kind] += 1

        counts = Counter(outcome.kind.value for outcome in outcomes)
        logger.info(
            f"[ImageFetcher] Batch complete for {self.config.type_name}: "
            f"{len(outcomes)} sources ({', '.join(f'{k}={v}' for k, v in sorted(counts.items()))})"
        )
        return outcomes

    async def fetch_one(self, source: Any) -> FetchOutcome:
        """Run the full pipeline for a single source."""
        try:
            url = self._normalize(source)
        except MalformedSourceError as e:
            logger.debug(f"[ImageFetcher] Leaving source unchanged: {e}")
            return FetchOutcome(source=source, value=source, kind=OutcomeKind.UNCHANGED, error=str(e))

        if is_local_source(url, self.config.download_from_local_network):
            return FetchOutcome(source=source, value=url, kind=OutcomeKind.LOCAL)

        folder, stem, ext = self.target_location(url)

        # Sources sharing a target wait here, then see the first one's file
        async with self._target_lock(folder / stem):
            return await self._fetch_target(source, url, folder, stem, ext)

    async def _fetch_target(self, source: Any, url: str, folder: Path, stem: str, ext: str) -> FetchOutcome:
        # Without an extension the file name is unknown until the HEAD
        # request; look for any earlier download of this stem first
        if not ext and self.config.cache:
            existing = await self.fs.find_existing(folder, stem)
            if existing is not None:
                logger.debug(f"[ImageFetcher] Cache hit: {url[:60]}...")
                return FetchOutcome(source=source, value=self.relative_path(existing), kind=OutcomeKind.CACHED)

        try:
            if not ext:
                ext = await self._guess_extension(url)
        except MetadataFetchError as e:
            logger.warning(
                f"[ImageFetcher] Unable to get image type for {self.config.type_name} - "
                f"Source URL: {url[:80]}... - {e}"
            )
            return self._fallback(source, url, error=str(e))

        file_path = folder / f"{stem}{ext}"
        relative_path = self.relative_path(file_path)

        if self.config.cache and await self.fs.exists(file_path):
            logger.debug(f"[ImageFetcher] Cache hit: {url[:60]}...")
            return FetchOutcome(source=source, value=relative_path, kind=OutcomeKind.CACHED)

        try:
            await self._download(url, file_path)
        except DownloadError as e:
            logger.warning(
                f"[ImageFetcher] Unable to download image for {self.config.type_name} - "
                f"Source URL: {url[:80]}... - {e}"
            )
            return self._fallback(source, url, error=str(e))

        logger.info(f"[ImageFetcher] Downloaded: {url[:60]}... -> {relative_path}")
        return FetchOutcome(source=source, value=relative_path, kind=OutcomeKind.DOWNLOADED)

    @asynccontextmanager
    async def _target_lock(self, key: Path) -> AsyncIterator[None]:
        entry = self._target_locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._target_locks[key]

    def _normalize(self, source: Any) -> str:
        normalization = self.config.url_normalization
        return normalize_url(
            source,
            force_https=normalization.force_https,
            normalize_protocol=normalization.normalize_protocol,
            default_protocol=normalization.default_protocol,
        )

    def _normalize_or_keep(self, source: Any) -> Any:
        try:
            return self._normalize(source)
        except MalformedSourceError:
            return source

    def target_location(self, url: str) -> Tuple[Path, str, str]:
        """
        Split a normalized remote URL into target folder, file stem and
        extension (possibly empty).

        The stem is the SHA-256 of the URL unless original names are
        requested; original-name mode also keeps the URL's directory.
        """
        name, directory, ext = split_url_path(url)

        if self.config.original and name:
            return self.config.target_dir / _safe_relative_dir(directory), name, ext

        return self.config.target_dir, url_digest(url), ext

    def relative_path(self, file_path: Path) -> str:
        """Path returned to the content tree, relative to the source root."""
        return Path(os.path.relpath(file_path, self.config.source_dir)).as_posix()

    async def _guess_extension(self, url: str) -> str:
        try:
            metadata = await self.http.head_metadata(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MetadataFetchError(f"HEAD request failed: {e}") from e

        ext = extension_for_content_type(metadata.content_type)
        if not ext:
            raise MetadataFetchError(f"Unrecognized content type: {metadata.content_type!r}")
        return ext

    async def _download(self, url: str, file_path: Path) -> None:
        """
        Stream the body to disk.

        The body goes to ``<file>.part`` and is renamed to ``file_path``
        only once complete; on any failure the partial file is removed.
        """
        partial_path = file_path.with_name(file_path.name + PARTIAL_SUFFIX)
        try:
            await self.fs.ensure_file(partial_path)
            with self.fs.open_write_sink(partial_path) as sink:
                async for chunk in self.http.stream_body(url):
                    sink.write(chunk)
            await self.fs.replace(partial_path, file_path)
        except Exception as e:
            await self.fs.remove(partial_path)
            raise DownloadError(str(e) or type(e).__name__) from e

    def _fallback(self, source: Any, url: Any, error: Optional[str] = None) -> FetchOutcome:
        value = self.config.fallback_image if self.config.fallback_image is not None else url
        return FetchOutcome(source=source, value=value, kind=OutcomeKind.FALLBACK, error=error)


def url_digest(url: str) -> str:
    """64-character lowercase hex SHA-256 of the URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def _safe_relative_dir(directory: str) -> Path:
    # Remote directories are nested under the target path, never above it
    parts = [part for part in directory.split("/") if part not in ("", ".", "..")]
    return Path(*parts) if parts else Path()
