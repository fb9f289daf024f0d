"""
Fetch-by-URI helper for model_uri / pipeline_uri services.

HTTP(S) goes through a reused ``requests.Session``; ``file://`` URIs and
plain paths are read from the local filesystem.
"""

import logging
import os
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from ..config import FetchConfig, get_config
from ..core.exceptions import InvalidParameterError, TransferIOError

logger = logging.getLogger(__name__)


class UriResolver:
    """Resolve a URI to its content bytes."""

    def __init__(self, config: Optional[FetchConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or get_config().fetch
        self.session = session or requests.Session()  # Reuse connections

    def fetch(self, uri: str) -> bytes:
        """
        Download the content at ``uri``.

        Raises:
            InvalidParameterError: If the URI is empty
            TransferIOError: If the content cannot be retrieved
        """
        if not uri:
            raise InvalidParameterError("The URI is empty.")

        scheme = urlparse(uri).scheme.lower()
        if scheme in ('http', 'https'):
            return self._fetch_http(uri)
        if scheme == 'file':
            return self._read_file(unquote(urlparse(uri).path))
        if scheme == '' or len(scheme) == 1:
            # Plain path (a one-letter scheme is a Windows drive)
            return self._read_file(uri)

        raise TransferIOError(f"Unsupported URI scheme '{scheme}'", context={'uri': uri})

    def _fetch_http(self, uri: str) -> bytes:
        logger.info(f"Fetching {uri}")
        try:
            response = self.session.get(
                uri,
                timeout=self.config.timeout,
                allow_redirects=self.config.follow_redirects,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {uri}: {e}")
            raise TransferIOError(f"Failed to fetch {uri}: {e}", context={'uri': uri}) from e

        data = response.content
        logger.debug(f"Fetched {len(data)} bytes from {uri}")
        return data

    def _read_file(self, path: str) -> bytes:
        if not os.path.isfile(path):
            raise TransferIOError(f"No such file: {path}", context={'uri': path})
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise TransferIOError(f"Failed to read {path}: {e}", context={'uri': path}) from e

    def close(self) -> None:
        self.session.close()
