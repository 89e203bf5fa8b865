"""HTTPS index accessor for remote package indexes."""

from __future__ import annotations

import hashlib
import json
import logging
import ssl
import tempfile
import threading
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import Request, urlopen

from lockstep.core.package import SourceId
from lockstep.registry.base import (
    IndexAccessor,
    IndexEntry,
    IndexFetchError,
    IndexUnavailable,
    NetworkMode,
)
from lockstep.registry.cache import MetadataCache
from lockstep.registry.common import extract_entries_from_package_data

logger = logging.getLogger(__name__)

_MISSING_PACKAGE_DOCUMENT = b'{"versions": []}'


class HttpsIndex(IndexAccessor):
    """Index accessor for an HTTPS-hosted index.

    The index serves one JSON document per package at ``<base>/<name>.json``
    with the same shape as an entry of a local ``index.json``. Documents are
    cached on disk, so an index fetched once can be used offline afterwards.

    Network behaviour follows the NetworkMode:
    - default: use a cached document younger than the TTL, otherwise fetch
    - no_refresh: use any cached document regardless of age, fetch if absent
    - offline: use any cached document, raise IndexUnavailable if absent
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(
        self,
        url: str,
        network: NetworkMode | None = None,
        cache_dir: Path | None = None,
        ttl_seconds: int | None = None,
        timeout: int | None = None,
    ):
        """Initialize the HTTPS index.

        Args:
            url: HTTPS URL of the index root (https://example.com/index/)
            network: Network access mode (default: online)
            cache_dir: Directory for cached index documents
            ttl_seconds: Age after which cached documents are refreshed
            timeout: Request timeout in seconds (default: 30)
        """
        self._original_url = url
        self._network = network or NetworkMode()
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._announced = False
        self._announce_lock = threading.Lock()

        logger.info("Initializing HTTPS index for %s", url)

        self._parsed = urlparse(url)
        if self._parsed.scheme != "https":
            raise IndexFetchError(
                f"Invalid URL scheme: {self._parsed.scheme} (expected https)",
                url=url,
            )
        self._url = url.rstrip("/") + "/"

        if cache_dir is None:
            cache_dir = Path(tempfile.gettempdir()) / "lockstep-cache" / "index"
        # One cache directory per index so each has its own metadata.json
        cache_dir = cache_dir / hashlib.sha256(self._url.encode("utf-8")).hexdigest()[:16]
        self._cache = MetadataCache(cache_dir, ttl_seconds)
        logger.debug("Using cache directory: %s", cache_dir)

        self._ssl_context = ssl.create_default_context()

    @property
    def source_id(self) -> SourceId:
        return SourceId.registry(self._original_url)

    @property
    def network(self) -> NetworkMode:
        return self._network

    def _package_url(self, name: str) -> str:
        return f"{self._url}{quote(name)}.json"

    def _announce_update(self) -> None:
        """Log the index update once per accessor."""
        with self._announce_lock:
            if self._announced:
                return
            self._announced = True
        logger.info("Updating `%s` index", self._original_url)

    def _make_request(self, url: str) -> bytes | None:
        """Make an HTTP GET request.

        Args:
            url: URL to request

        Returns:
            Response body as bytes, or None if the server answered 404

        Raises:
            IndexFetchError: If the request fails
        """
        logger.debug("Making GET request to %s", url)
        try:
            request = Request(url, method="GET")
            with urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:
                result: bytes = response.read()
                logger.debug("Request successful, received %d bytes", len(result))
                return result
        except HTTPError as e:
            if e.code == 404:
                logger.debug("No index document at %s", url)
                return None
            logger.error("HTTP error %d: %s for %s", e.code, e.reason, url)
            raise IndexFetchError(
                f"HTTP {e.code}: {e.reason} for {url}",
                url=url,
                status_code=e.code,
            ) from e
        except URLError as e:
            logger.error("Failed to connect to %s: %s", url, e.reason)
            raise IndexFetchError(
                f"Failed to connect to {url}: {e.reason}",
                url=url,
            ) from e
        except TimeoutError as e:
            logger.error("Request timed out for %s", url)
            raise IndexFetchError(
                f"Request timed out for {url}",
                url=url,
            ) from e

    def _get_package_document(self, name: str) -> bytes:
        """Get the raw per-package document from cache or network."""
        package_url = self._package_url(name)
        allow_stale = self._network.offline or self._network.no_refresh

        cached = self._cache.get(package_url, allow_stale=allow_stale)
        if cached is not None:
            return cached

        if self._network.offline:
            raise IndexUnavailable(name, self._original_url)

        self._announce_update()
        content = self._make_request(package_url)
        if content is None:
            content = _MISSING_PACKAGE_DOCUMENT
        self._cache.put(package_url, content, metadata={"package": name})
        return content

    def query(self, name: str) -> list[IndexEntry]:
        """Get every available version of a package from the remote index."""
        logger.debug("Querying '%s' from HTTPS index %s", name, self._url)
        content = self._get_package_document(name)
        try:
            data: dict[str, Any] = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IndexFetchError(
                f"Invalid JSON in index document for `{name}`: {e}",
                url=self._package_url(name),
            ) from e
        if not isinstance(data, dict):
            raise IndexFetchError(
                f"Malformed index document for `{name}`", url=self._package_url(name)
            )
        return extract_entries_from_package_data(
            data, name, self.source_id, self._package_url(name)
        )
