"""Blocklist source acquisition from local files and HTTP(S) URLs."""

import logging
import os
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Iterable, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .config import DEFAULT_TIMEOUT
from .errors import SourceFetchFailed, SourceMetadataMissing, UnsupportedScheme

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

FILE_SCHEME = "file://"
HTTP_SCHEMES = ("http://", "https://")

MAX_RETRIES = 3
RETRY_BACKOFF = 0.5
RETRY_STATUS_CODES = [429, 500, 502, 503, 504]

CHUNK_SIZE = 64 * 1024
USER_AGENT = f"dnsdb/{__version__}"


def parse_last_modified(value: Optional[str]) -> datetime:
    """Parse an RFC 1123 Last-Modified header into an aware UTC datetime."""
    if not value:
        raise SourceMetadataMissing("Last-Modified header is missing")
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as e:
        raise SourceMetadataMissing(f"Unparseable Last-Modified header: {value!r}") from e
    if parsed is None:
        raise SourceMetadataMissing(f"Unparseable Last-Modified header: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ============================================================================
# SOURCE PAYLOAD
# ============================================================================

class SourcePayload:
    """An open blocklist source: lazily read raw lines plus a last-modified time.

    Use as a context manager so the file handle or HTTP connection is
    released once the writer has consumed it.
    """

    def __init__(self, url: str, last_modified: datetime, reader: Iterable[bytes],
                 closer: Callable[[], None]):
        self.url = url
        self.last_modified = last_modified
        self._reader = reader
        self._closer = closer
        self._closed = False

    def lines(self) -> Iterator[bytes]:
        """Yield raw lines; read errors surface as SourceFetchFailed."""
        try:
            yield from self._reader
        except (OSError, requests.RequestException) as e:
            raise SourceFetchFailed(f"Error reading {self.url}: {e}") from e

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._closer()

    def __enter__(self) -> "SourcePayload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# HTTP CLIENT
# ============================================================================

class HTTPClient:
    """HTTP client with retry logic."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session if session is not None else self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a session with retry logic."""
        session = requests.Session()
        retry = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=["GET"]
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers['User-Agent'] = USER_AGENT
        return session

    def open(self, url: str) -> SourcePayload:
        """Issue a streaming GET; only a 200 with a valid Last-Modified is accepted."""
        try:
            response = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise SourceFetchFailed(f"Error fetching {url}: {e}") from e

        try:
            if response.status_code != 200:
                raise SourceFetchFailed(f"Error with {url} url with http code {response.status_code}")
            last_modified = parse_last_modified(response.headers.get('Last-Modified'))
        except Exception:
            response.close()
            raise

        return SourcePayload(
            url,
            last_modified,
            response.iter_lines(chunk_size=CHUNK_SIZE, delimiter=b"\n"),
            response.close,
        )

    def close(self) -> None:
        self.session.close()


# ============================================================================
# ACQUISITION
# ============================================================================

def open_file_source(url: str) -> SourcePayload:
    """Open a file:// source; last-modified is the file's mtime."""
    path = url[len(FILE_SCHEME):]
    try:
        handle = open(path, 'rb')
    except OSError as e:
        raise SourceFetchFailed(f"Cannot open {path}: {e}") from e

    try:
        mtime = os.fstat(handle.fileno()).st_mtime
    except OSError as e:
        handle.close()
        raise SourceFetchFailed(f"Cannot stat {path}: {e}") from e

    return SourcePayload(url, datetime.fromtimestamp(mtime, tz=timezone.utc), handle, handle.close)


def acquire(url: str, http_client: HTTPClient) -> SourcePayload:
    """Open a blocklist source by URL scheme."""
    if url.startswith(FILE_SCHEME):
        return open_file_source(url)
    if url.startswith(HTTP_SCHEMES):
        return http_client.open(url)
    raise UnsupportedScheme(f"Can't access data at {url}: unsupported scheme")
