"""Rebuild suppression based on destination mtime."""

import logging
import os
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def should_rebuild(dest: str, source_last_modified: datetime, force: bool = False) -> bool:
    """Return True unless *dest* exists and is not older than the source.

    A destination that is missing or cannot be stat'ed is always rebuilt.
    """
    if force:
        return True

    try:
        mtime = os.stat(dest).st_mtime
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning(f"Cannot stat {dest}, rebuilding: {e}")
        return True

    if source_last_modified.tzinfo is None:
        source_last_modified = source_last_modified.replace(tzinfo=timezone.utc)
    dest_modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
    return dest_modified < source_last_modified
