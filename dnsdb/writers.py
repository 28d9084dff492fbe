"""On-disk artifact writers.

Two realizations of the same begin/put/finalize contract:

- StringArtifactWriter: constant database (cdb) file for exact-match keys.
- RangeArtifactWriter: LMDB single-file store, key = upper address,
  value = lower address, in one named table.

Both build at ``<dest>.tmp`` and publish with an atomic rename.
"""

import logging
import mmap
import os
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Iterable, List, Optional, Tuple

import cdblib
import lmdb

from .errors import DestinationOpenFailed, PublishFailed, StoreTransactionFailed

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

TMP_SUFFIX = ".tmp"
LOCK_SUFFIX = "-lock"

TABLE_NAME = b"db"  # the DNS filter looks the table up by this name

DEFAULT_MAP_SIZE = 100 * 1024 * 1024
MAP_GROWTH_FACTOR = 1.5
PAGE_SIZE = mmap.PAGESIZE
MAX_DBS = 4
MAX_READERS = 100
STORE_MODE = 0o664


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


# ============================================================================
# WRITER INTERFACE
# ============================================================================

class ArtifactWriter(ABC):
    """Builds one artifact at a temp sibling and publishes it to *dest*."""

    def __init__(self, dest: str):
        self.dest = dest
        self.tmp_path = dest + TMP_SUFFIX
        self.count = 0

    @abstractmethod
    def begin(self) -> None:
        """Create the temp artifact."""

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        """Add one entry."""

    @abstractmethod
    def finalize(self) -> None:
        """Complete the temp artifact and publish it."""

    @abstractmethod
    def abort(self) -> None:
        """Release resources; the temp artifact is left for the next run to overwrite."""

    def publish(self) -> None:
        try:
            os.replace(self.tmp_path, self.dest)
        except OSError as e:
            raise PublishFailed(f"Cannot rename {self.tmp_path} to {self.dest}: {e}") from e

    def write_all(self, items: Iterable[Tuple[bytes, bytes]]) -> int:
        """Run begin, put for every item, then finalize. Returns the entry count."""
        self.begin()
        try:
            for key, value in items:
                self.put(key, value)
            self.finalize()
        except BaseException:
            self.abort()
            raise
        return self.count


# ============================================================================
# STRING ARTIFACT (CDB)
# ============================================================================

class StringArtifactWriter(ArtifactWriter):
    """Constant key/value database for domain and string lists."""

    def __init__(self, dest: str):
        super().__init__(dest)
        self._handle: Optional[BinaryIO] = None
        self._writer: Optional[cdblib.Writer] = None

    def begin(self) -> None:
        try:
            _ensure_parent(self.tmp_path)
            self._handle = open(self.tmp_path, 'wb')
            self._writer = cdblib.Writer(self._handle)
        except OSError as e:
            self.abort()
            raise DestinationOpenFailed(f"Cannot create {self.tmp_path}: {e}") from e
        self.count = 0

    def put(self, key: bytes, value: bytes) -> None:
        try:
            self._writer.put(key, value)
        except (OSError, ValueError) as e:
            raise StoreTransactionFailed(f"Cannot add {key!r} to {self.tmp_path}: {e}") from e
        self.count += 1

    def finalize(self) -> None:
        try:
            self._writer.finalize()
            self._handle.flush()
            os.fsync(self._handle.fileno())
        except OSError as e:
            raise StoreTransactionFailed(f"Cannot finalize {self.tmp_path}: {e}") from e
        finally:
            self._close()
        self.publish()

    def abort(self) -> None:
        self._close()

    def _close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None


# ============================================================================
# RANGE STORE (LMDB)
# ============================================================================

class RangeStore:
    """Single-file LMDB environment that grows its map when it fills up."""

    def __init__(self, path: str, map_size: int = DEFAULT_MAP_SIZE):
        self.path = path
        try:
            _ensure_parent(path)
            self.env = lmdb.open(
                path,
                map_size=map_size,
                subdir=False,
                readahead=False,
                mode=STORE_MODE,
                max_dbs=MAX_DBS,
                max_readers=MAX_READERS,
            )
        except (OSError, lmdb.Error) as e:
            raise DestinationOpenFailed(f"Cannot open store {path}: {e}") from e

    @property
    def map_size(self) -> int:
        return self.env.info()['map_size']

    def grow(self) -> int:
        """Enlarge the map by MAP_GROWTH_FACTOR, rounded up to a page boundary.

        Must only be called with no transaction open.
        """
        current = self.map_size
        new_size = int(current * MAP_GROWTH_FACTOR)
        remainder = new_size % PAGE_SIZE
        if remainder:
            new_size += PAGE_SIZE - remainder
        try:
            self.env.set_mapsize(new_size)
        except lmdb.Error as e:
            raise StoreTransactionFailed(f"Cannot grow map of {self.path} to {new_size}: {e}") from e
        logger.debug(f"Increased map size of {self.path} from {current:,} to {new_size:,} bytes")
        return new_size

    def table(self, txn: lmdb.Transaction) -> Any:
        return self.env.open_db(TABLE_NAME, txn=txn, create=True)

    def update(self, fn: Callable[[lmdb.Transaction], Any]) -> Any:
        """Run *fn* in a write transaction and commit, retrying after growing on MapFull."""
        while True:
            try:
                with self.env.begin(write=True) as txn:
                    return fn(txn)
            except lmdb.MapFullError:
                self.grow()
            except lmdb.Error as e:
                raise StoreTransactionFailed(f"Transaction on {self.path} failed: {e}") from e

    def close(self) -> None:
        self.env.close()


# ============================================================================
# RANGE ARTIFACT
# ============================================================================

class RangeArtifactWriter(ArtifactWriter):
    """Address ranges stored as upper -> lower in the named LMDB table.

    Entries are buffered until finalize so the insert transaction can be
    replayed after a map resize.
    """

    def __init__(self, dest: str, map_size: int = DEFAULT_MAP_SIZE):
        super().__init__(dest)
        self.map_size = map_size
        self._store: Optional[RangeStore] = None
        self._entries: List[Tuple[bytes, bytes]] = []

    def begin(self) -> None:
        self._entries = []
        self.count = 0
        self._store = RangeStore(self.tmp_path, self.map_size)
        try:
            self._store.update(self._drop_table)
        except BaseException:
            self.abort()
            raise

    def put(self, key: bytes, value: bytes) -> None:
        self._entries.append((key, value))
        self.count += 1

    def finalize(self) -> None:
        try:
            self._store.update(self._insert_entries)
        finally:
            self._close()
        self.publish()
        try:
            os.remove(self.tmp_path + LOCK_SUFFIX)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Cannot remove {self.tmp_path + LOCK_SUFFIX}: {e}")

    def abort(self) -> None:
        self._close()

    def _close(self) -> None:
        if self._store is not None:
            self._store.close()
        self._store = None
        self._entries = []

    def _drop_table(self, txn: lmdb.Transaction) -> None:
        txn.drop(self._store.table(txn), delete=True)

    def _insert_entries(self, txn: lmdb.Transaction) -> None:
        table = self._store.table(txn)
        for upper, lower in self._entries:
            txn.put(upper, lower, db=table)
