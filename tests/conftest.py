import logging
import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import cdblib
import lmdb
import pytest

from dnsdb.config import BlocklistSpec, PipelineConfig
from dnsdb.source import HTTPClient
from dnsdb.writers import TABLE_NAME

LAST_MODIFIED = "Mon, 02 Jan 2006 15:04:05 GMT"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"",
                 headers: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.status_code = status_code
        self.headers = headers if headers is not None else {"Last-Modified": LAST_MODIFIED}
        self.body = body
        self.error = error
        self.closed = False

    def iter_lines(self, chunk_size: int = 512, delimiter: Optional[bytes] = None) -> Iterator[bytes]:
        yield from self.body.split(delimiter or b"\n")
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; maps URL -> FakeResponse or exception."""

    def __init__(self, responses: Dict[str, object]):
        self.responses = responses
        self.calls: List[str] = []
        self.closed = False

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_dnsdb_logger():
    yield
    logger = logging.getLogger("dnsdb")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    if hasattr(logger, "_dnsdb_configured"):
        del logger._dnsdb_configured


@pytest.fixture
def write_source(tmp_path: Path):
    """Write a local blocklist and return its file:// URL."""
    def _write(name: str, content: bytes, mtime: Optional[float] = None) -> str:
        path = tmp_path / name
        path.write_bytes(content)
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return "file://" + str(path)
    return _write


def make_http_client(responses: Dict[str, object]) -> HTTPClient:
    return HTTPClient(timeout=5, session=FakeSession(responses))


def make_config(*blocklists: BlocklistSpec, ipv4_min: int = 0, ipv6_min: int = 0) -> PipelineConfig:
    return PipelineConfig(ipv4_min_prefix=ipv4_min, ipv6_min_prefix=ipv6_min, blocklists=list(blocklists))


def read_string_db(path) -> cdblib.Reader:
    return cdblib.Reader(Path(path).read_bytes())


def read_range_store(path) -> Dict[bytes, bytes]:
    env = lmdb.open(str(path), subdir=False, readonly=True, lock=False, max_dbs=4)
    try:
        with env.begin() as txn:
            table = env.open_db(TABLE_NAME, txn=txn, create=False)
            return {bytes(k): bytes(v) for k, v in txn.cursor(db=table)}
    finally:
        env.close()
