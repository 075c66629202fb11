"""
Remote Images Plugin

Runs once per content build: reads the configured collection from the
content store, finds the image field in every record and replaces remote
URLs with paths to downloaded copies.
"""

import logging
from typing import Any, Mapping, Optional

from .config import FetchConfig
from .content_store import ContentStoreLike
from .exceptions import InvalidOptionsError
from .fetcher import HttpClient, ImageFetcher, LocalFileSystem
from .path_resolver import traverse_and_replace

logger = logging.getLogger(__name__)


class RemoteImagePlugin:
    """
    Usage:
        plugin = RemoteImagePlugin.create(store, options)
        if plugin:
            await plugin.update_nodes()
    """

    def __init__(
        self,
        store: ContentStoreLike,
        config: FetchConfig,
        http: Optional[HttpClient] = None,
        fs: Optional[LocalFileSystem] = None,
    ):
        self.store = store
        self.config = config
        self._http = http
        self._fs = fs
        self.last_stats = {}

    @classmethod
    def create(
        cls,
        store: ContentStoreLike,
        options: Optional[Mapping[str, Any]],
        **kwargs,
    ) -> Optional["RemoteImagePlugin"]:
        """
        Validate options and build the plugin.

        Returns None (after logging every problem) when the options are
        invalid, so a misconfigured plugin never breaks the build.
        """
        try:
            config = FetchConfig.from_options(options)
        except InvalidOptionsError as e:
            logger.warning(
                "[RemoteImages] Remote images are not downloaded. Please check your configuration.\n"
                + "\n".join(f"* {problem}" for problem in e.problems)
            )
            return None

        return cls(store, config, **kwargs)

    def make_fetcher(self) -> ImageFetcher:
        return ImageFetcher(self.config, http=self._http, fs=self._fs)

    async def update_nodes(self) -> Any:
        """
        Localize images in the configured collection.

        Returns the (mutated) collection data, or None when the
        collection does not exist.
        """
        collection = self.store.get_collection(self.config.type_name)
        if collection is None:
            logger.warning(f"[RemoteImages] Collection not found: {self.config.type_name}")
            return None

        fetcher = self.make_fetcher()
        try:
            data = await traverse_and_replace(
                collection.data(),
                self.config.field_path,
                fetcher.transform,
                strict=self.config.strict_leaf_types,
            )
        finally:
            await fetcher.close()

        summary = ", ".join(f"{kind.value}={count}" for kind, count in sorted(fetcher.stats.items()))
        logger.info(
            f"[RemoteImages] {self.config.type_name}.{self.config.source_field}: "
            f"{summary or 'no images found'}"
        )
        self.last_stats = dict(fetcher.stats)
        return data
