"""Exception hierarchy for the dnsdb build pipeline."""


class DnsdbError(Exception):
    """Base class for all dnsdb errors."""


# ============================================================================
# CONFIGURATION
# ============================================================================

class ConfigError(DnsdbError):
    """Configuration document could not be loaded."""


# ============================================================================
# SOURCE ACQUISITION
# ============================================================================

class SourceError(DnsdbError):
    """A blocklist source could not be acquired."""


class SourceFetchFailed(SourceError):
    """Network error, unreadable file or non-200 HTTP status."""


class SourceMetadataMissing(SourceError):
    """Missing or malformed Last-Modified header."""


class UnsupportedScheme(SourceError):
    """URL scheme is not file, http or https."""


# ============================================================================
# PER-LINE VALIDATION
# ============================================================================

class ValidationError(DnsdbError):
    """A single line was rejected; the build continues."""


class AddressParseFailed(ValidationError):
    pass


class PrefixTooBroad(ValidationError):
    pass


# ============================================================================
# WRITERS
# ============================================================================

class WriterError(DnsdbError):
    """An artifact could not be written; fatal for one blocklist."""


class DestinationOpenFailed(WriterError):
    pass


class StoreTransactionFailed(WriterError):
    pass


class PublishFailed(WriterError):
    pass
