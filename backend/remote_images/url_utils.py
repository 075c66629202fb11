"""
URL Helpers

Handles:
- Normalizing image source URLs before they are used as cache keys
- Deciding whether a source is a downloadable remote URL or a local value
- Splitting a URL path into name / dir / ext
- Mapping HTTP content types to file extensions
"""

import ipaddress
import mimetypes
import posixpath
import re
from typing import Any, NamedTuple, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .exceptions import MalformedSourceError

# Scheme prefix such as "http://" or "ftp://"
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+.\-]*://")
# "/x", "./x", "../x" (but not protocol-relative "//x")
_RELATIVE_RE = re.compile(r"^\.*/(?!/)")
_WWW_RE = re.compile(r"^www\.(?!www\.)[a-z\-\d]{1,63}\.[a-z.\-\d]{2,63}$")
_TLD_RE = re.compile(r"\.[a-z\u00a1-\uffff]{2,}$")
_TRACKING_PARAM_RE = re.compile(r"^utm_\w+", re.IGNORECASE)

DEFAULT_PORTS = {"http": 80, "https": 443, "ftp": 21}
REMOTE_SCHEMES = ("http", "https", "ftp")

# Preferred extensions; mimetypes picks odd ones for a few image types
CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/pjpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/svg+xml": ".svg",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
    "image/bmp": ".bmp",
    "image/tiff": ".tif",
    "image/heic": ".heic",
    "image/heif": ".heif",
}


class UrlParts(NamedTuple):
    """Pieces of a URL path, mirroring os.path splitting."""
    name: str
    dir: str
    ext: str


def normalize_url(
    source: Any,
    force_https: bool = False,
    normalize_protocol: bool = True,
    default_protocol: str = "http:",
) -> str:
    """
    Canonicalize an image URL.

    Lowercases scheme and host, strips credentials, "www.", default ports,
    duplicate and trailing slashes and utm_* parameters, and sorts the
    query string. Bare hosts get ``default_protocol``.

    Raises:
        MalformedSourceError: for non-strings, relative paths and URLs
            without a host.
    """
    if not isinstance(source, str):
        raise MalformedSourceError(f"Expected a string, got {type(source).__name__}")

    url = source.strip()
    if not url:
        raise MalformedSourceError("Empty source")

    # data: URLs are already self-contained
    if url.lower().startswith("data:"):
        return url

    if _RELATIVE_RE.match(url):
        raise MalformedSourceError(f"Relative URL: {url}")

    has_relative_protocol = url.startswith("//")
    if has_relative_protocol:
        url = default_protocol + url
    elif not _SCHEME_RE.match(url):
        url = f"{default_protocol}//{url}"

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise MalformedSourceError(f"Invalid URL {source!r}: {e}") from e

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").rstrip(".")
    if not host:
        raise MalformedSourceError(f"URL has no host: {source}")

    if force_https and scheme == "http":
        scheme = "https"

    if _WWW_RE.match(host):
        host = host[4:]

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = re.sub(r"/{2,}", "/", parts.path)
    path = path.rstrip("/")

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _TRACKING_PARAM_RE.match(key)
    ]
    query = urlencode(sorted(query_pairs))

    normalized = urlunsplit((scheme, netloc, path, query, parts.fragment))

    if has_relative_protocol and not normalize_protocol:
        normalized = re.sub(r"^https?://", "//", normalized)

    return normalized


def _is_public_address(host: str) -> Optional[bool]:
    """Return True/False for IP literals, None for domain names."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return None

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped

    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_unspecified
        or ip.is_multicast
    )


def is_remote_url(url: str, allow_local: bool = False) -> bool:
    """
    Check whether ``url`` is a URL that may be downloaded.

    With ``allow_local`` False, loopback/private addresses, "localhost"
    and hosts without a top level domain are rejected.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return False

    if parts.scheme.lower() not in REMOTE_SCHEMES or not host:
        return False

    if allow_local:
        return True

    public = _is_public_address(host)
    if public is not None:
        return public

    host = host.rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return False
    return bool(_TLD_RE.search(host))


def is_local_source(source: str, download_from_local_network: bool = False) -> bool:
    """A source is local when it is not a downloadable remote URL."""
    return not is_remote_url(source, allow_local=download_from_local_network)


def split_url_path(url: str) -> UrlParts:
    """Parse the URL's path into ``(name, dir, ext)``."""
    path = urlsplit(url).path or "/"
    directory, base = posixpath.split(path)
    name, ext = posixpath.splitext(base)
    return UrlParts(name=name, dir=directory, ext=ext)


def extension_for_content_type(content_type: Optional[str]) -> Optional[str]:
    """
    Map a Content-Type header value to a file extension (with the dot).

    Returns None when the header is missing or unknown.
    """
    if not content_type:
        return None

    mime = content_type.split(";")[0].strip().lower()
    if not mime:
        return None

    if mime in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[mime]

    return mimetypes.guess_extension(mime)
