"""Index accessor factory."""

import logging
from pathlib import Path
from urllib.parse import urlparse

from lockstep.registry.base import IndexAccessor, NetworkMode

logger = logging.getLogger(__name__)


class UnsupportedProtocolError(Exception):
    """Error when an index URL uses an unsupported protocol."""

    def __init__(self, protocol: str, url: str):
        self.protocol = protocol
        self.url = url
        super().__init__(f"Unsupported index protocol: {protocol} (in {url})")


def create_index(
    url: str,
    network: NetworkMode | None = None,
    cache_dir: Path | None = None,
    base_dir: Path | None = None,
    ttl_seconds: int | None = None,
) -> IndexAccessor:
    """Create an index accessor for the given URL.

    Args:
        url: Index URL (file://, file:, https://)
        network: Network access mode passed to remote indexes
        cache_dir: Optional directory for caching remote index documents
        base_dir: Directory relative file: URLs are resolved against
        ttl_seconds: Cache TTL for remote index documents

    Returns:
        Appropriate IndexAccessor instance

    Raises:
        UnsupportedProtocolError: If the protocol is not supported
    """
    logger.debug("Creating index accessor for URL: %s", url)

    # Handle file: URLs (both file:// and file:)
    if url.startswith("file:"):
        from lockstep.registry.local import LocalIndex

        logger.info("Creating local index accessor for %s", url)
        return LocalIndex(url, base_dir=base_dir)

    parsed = urlparse(url)
    protocol = parsed.scheme.lower()

    if protocol == "https":
        from lockstep.registry.https import HttpsIndex

        logger.info("Creating HTTPS index accessor for %s", url)
        return HttpsIndex(url, network=network, cache_dir=cache_dir, ttl_seconds=ttl_seconds)

    logger.error("Unsupported protocol: %s in URL %s", protocol, url)
    raise UnsupportedProtocolError(protocol or "(none)", url)


def normalize_source(source: str) -> str:
    """Normalize a source string to a standard URL format.

    Args:
        source: Source URL or path

    Returns:
        Normalized URL string
    """
    if source.startswith("file:"):
        return source
    if source.startswith(("./", "../")):
        return f"file:{source}"
    if source.startswith("/"):
        return f"file://{source}"
    # Windows absolute path
    if len(source) > 2 and source[1] == ":" and source[2] in ("/", "\\"):
        return f"file:///{source}"
    return source
