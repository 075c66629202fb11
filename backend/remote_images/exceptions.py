"""
Remote Images Errors

Failures raised inside a single source's pipeline are caught by the
fetcher and turned into a fallback outcome; only option validation
escapes to the caller.
"""


class RemoteImageError(Exception):
    """Base class for remote image errors."""


class MalformedSourceError(RemoteImageError, ValueError):
    """The image source could not be normalized into a URL."""


class MetadataFetchError(RemoteImageError):
    """HEAD request failed or returned no usable content type."""


class DownloadError(RemoteImageError):
    """Streaming the image body to disk failed."""


class UnsupportedLeafTypeError(RemoteImageError, TypeError):
    """A located leaf is neither a string nor an array."""


class InvalidOptionsError(RemoteImageError, ValueError):
    """Plugin options failed validation."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))
