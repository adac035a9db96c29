"""Exception types raised by the siteaudit core."""

from __future__ import annotations


class SiteAuditError(Exception):
    """Base exception for siteaudit errors."""
    pass


class InvalidUrl(SiteAuditError):
    """Raised when a URL cannot be parsed into scheme, host and path."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        message = f"Invalid URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ConfigError(SiteAuditError):
    """Raised on unreadable or malformed configuration files."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)
