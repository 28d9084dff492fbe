"""Configuration document loading.

dnsdb.yml
---------
config:
  ipv4_max_cidr_value: 16
  ipv6_max_cidr_value: 48
  blocklists:
    - url: https://example.org/domains.txt
      file: /etc/dnsdist/db/domains.cdb
      type: domain
    - url: file:///srv/lists/ips.txt
      file: /etc/dnsdist/db/ips.mdb
      type: ip
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_CONFIG_FILE = "dnsdb.yml"
DEFAULT_TIMEOUT = 60

KIND_DOMAIN = "domain"
KIND_STRING = "string"
KIND_IP = "ip"

STRING_KINDS = (KIND_DOMAIN, KIND_STRING)
VALID_KINDS = STRING_KINDS + (KIND_IP,)

IPV4_BITS = 32
IPV6_BITS = 128

# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class BlocklistSpec:
    """A single configured blocklist."""
    url: str
    file: str
    kind: str = KIND_DOMAIN
    default_value: bytes = b""

    @property
    def is_string_kind(self) -> bool:
        return self.kind in STRING_KINDS


@dataclass
class PipelineConfig:
    """Per-run limits and the ordered blocklists."""
    ipv4_min_prefix: int = 0
    ipv6_min_prefix: int = 0
    timeout: int = DEFAULT_TIMEOUT
    basedir: Optional[str] = None
    blocklists: List[BlocklistSpec] = field(default_factory=list)

    def __post_init__(self):
        if not 0 <= self.ipv4_min_prefix <= IPV4_BITS:
            raise ConfigError(f"ipv4_max_cidr_value must be within 0..{IPV4_BITS}, got {self.ipv4_min_prefix}")
        if not 0 <= self.ipv6_min_prefix <= IPV6_BITS:
            raise ConfigError(f"ipv6_max_cidr_value must be within 0..{IPV6_BITS}, got {self.ipv6_min_prefix}")
        if self.timeout <= 0:
            self.timeout = DEFAULT_TIMEOUT


# ============================================================================
# LOADING
# ============================================================================

def _as_int(items: Dict[str, Any], key: str, default: int) -> int:
    value = items.get(key, default)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from e


def parse_blocklist(entry: Any, basedir: Optional[str], index: int) -> Optional[BlocklistSpec]:
    """Build a BlocklistSpec from one raw record, or None if it is unusable."""
    if not isinstance(entry, dict):
        logger.warning(f"Invalid blocklist entry #{index}: expected a mapping")
        return None

    url = str(entry.get('url') or '').strip()
    file = str(entry.get('file') or '').strip()
    kind = str(entry.get('type') or KIND_DOMAIN).strip().lower()

    if not url or not file:
        logger.warning(f"Blocklist entry #{index} needs both 'url' and 'file'")
        return None
    if kind not in VALID_KINDS:
        logger.warning(f"Unknown type '{kind}' in blocklist entry #{index}, expected one of {', '.join(VALID_KINDS)}")
        return None

    if basedir and not os.path.isabs(file):
        file = os.path.join(basedir, file)

    default_value = entry.get('default_value')
    return BlocklistSpec(
        url=url,
        file=file,
        kind=kind,
        default_value=str(default_value).encode('utf-8') if default_value is not None else b"",
    )


def load_config(path: str) -> PipelineConfig:
    """Load and validate the YAML configuration document."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in '{path}': {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get('config'), dict):
        raise ConfigError(f"'{path}' has no top-level 'config' mapping")

    items = document['config']
    raw_blocklists = items.get('blocklists') or []
    if not isinstance(raw_blocklists, list):
        raise ConfigError("'blocklists' must be a list")

    basedir = items.get('basedir')
    blocklists = []
    for index, entry in enumerate(raw_blocklists, 1):
        spec = parse_blocklist(entry, basedir, index)
        if spec is not None:
            blocklists.append(spec)

    if not blocklists:
        logger.warning(f"No usable blocklists found in {path}")

    config = PipelineConfig(
        ipv4_min_prefix=_as_int(items, 'ipv4_max_cidr_value', 0),
        ipv6_min_prefix=_as_int(items, 'ipv6_max_cidr_value', 0),
        timeout=_as_int(items, 'timeout', DEFAULT_TIMEOUT),
        basedir=basedir,
        blocklists=blocklists,
    )
    logger.info(f"Loaded {len(blocklists)} blocklists from {path}")
    return config
