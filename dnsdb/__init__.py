"""dnsdb: build DNS filter lookup databases from plain-text blocklists."""

__version__ = "1.0.0"
