"""Blocklist compilation driver."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Tuple

from tqdm import tqdm

from .config import KIND_IP, BlocklistSpec, PipelineConfig
from .errors import DnsdbError, ValidationError
from .freshness import should_rebuild
from .parsing import encode_range, parse_lines
from .source import HTTPClient, SourcePayload, acquire
from .writers import ArtifactWriter, RangeArtifactWriter, StringArtifactWriter

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Command-line switches that alter a run."""
    force: bool = False
    dry_run: bool = False
    quiet: bool = False


class DatabaseBuilder:
    """Builds every configured blocklist artifact, sequentially and in order."""

    def __init__(self, config: PipelineConfig, options: Optional[RunOptions] = None,
                 http_client: Optional[HTTPClient] = None):
        self.config = config
        self.options = options or RunOptions()
        self.http_client = http_client or HTTPClient(timeout=config.timeout)

        self.stats: Dict[str, Any] = {
            'total_lists': len(config.blocklists),
            'successful': 0,
            'skipped': 0,
            'failed': 0,
            'items': 0,
            'rejected_lines': 0,
            'start_time': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        }

    # ------------------------------------------------------------------ #
    # item sources
    # ------------------------------------------------------------------ #

    def string_items(self, payload: SourcePayload, default_value: bytes) -> Iterator[Tuple[bytes, bytes]]:
        for line in parse_lines(payload.lines()):
            yield line, default_value

    def range_items(self, payload: SourcePayload) -> Iterator[Tuple[bytes, bytes]]:
        """Encode each line to (upper, lower); rejected lines are logged and skipped."""
        for line in parse_lines(payload.lines()):
            try:
                yield encode_range(line, self.config.ipv4_min_prefix, self.config.ipv6_min_prefix)
            except ValidationError as e:
                self.stats['rejected_lines'] += 1
                logger.warning(f"Skipping {line.decode('utf-8', errors='replace')!r} from {payload.url}: {e}")

    # ------------------------------------------------------------------ #
    # per blocklist
    # ------------------------------------------------------------------ #

    def build_artifact(self, blocklist: BlocklistSpec, payload: SourcePayload) -> int:
        """Write one artifact from an open source. Returns the number of items written."""
        writer: ArtifactWriter
        if blocklist.kind == KIND_IP:
            writer = RangeArtifactWriter(blocklist.file)
            items = self.range_items(payload)
        else:
            writer = StringArtifactWriter(blocklist.file)
            items = self.string_items(payload, blocklist.default_value)
        return writer.write_all(items)

    def process_blocklist(self, blocklist: BlocklistSpec) -> None:
        try:
            payload = acquire(blocklist.url, self.http_client)
        except DnsdbError as e:
            logger.error(f"Error acquiring {blocklist.url}: {e}")
            self.stats['failed'] += 1
            return

        with payload:
            if not should_rebuild(blocklist.file, payload.last_modified, self.options.force):
                logger.info(f"not modifying file {blocklist.file}")
                self.stats['skipped'] += 1
                return

            if self.options.dry_run:
                logger.info(f"[DRY RUN] Would rebuild {blocklist.file} from {blocklist.url}")
                self.stats['skipped'] += 1
                return

            try:
                handled = self.build_artifact(blocklist, payload)
            except DnsdbError as e:
                logger.error(f"Error building {blocklist.file} from {blocklist.url}: {e}")
                self.stats['failed'] += 1
                return

        logger.info(f"{handled} items handled for url {blocklist.url}")
        self.stats['successful'] += 1
        self.stats['items'] += handled

    def run(self) -> Dict[str, Any]:
        """Run the pipeline over all blocklists."""
        start_time = time.time()

        blocklists = tqdm(
            self.config.blocklists,
            desc="Blocklists",
            unit="list",
            disable=self.options.quiet,
        )
        try:
            for blocklist in blocklists:
                self.process_blocklist(blocklist)
        finally:
            blocklists.close()
            self.http_client.close()

        elapsed_time = time.time() - start_time
        self.stats['elapsed_time'] = f"{elapsed_time:.2f} seconds"
        return self.stats
