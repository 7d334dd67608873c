from typing import Optional, Dict, Any
from fastapi import HTTPException
from .errors import ErrorDetail, ErrorCode

class APIError(HTTPException):
    def __init__(
        self,
        error: ErrorDetail,
        details: Optional[Dict[str, Any]] = None,
        override_message: Optional[str] = None,
    ):
        self.error_code = error.code
        self.details = details or {}
        #override message if provided
        message = override_message or error.message
        super().__init__(status_code=error.status_code, detail=message)


class EdgeGuardError(Exception):
    """Base class for trusted range errors."""


class MalformedRangeError(EdgeGuardError):
    """A non-blank line of a range list is not a CIDR prefix."""
    def __init__(self, line: str, reason: Optional[str] = None):
        self.line = line
        message = f"Malformed CIDR prefix: {line!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidAddressError(EdgeGuardError):
    """A peer address could not be parsed as an IPv4/IPv6 literal."""
    def __init__(self, address: str, reason: Optional[str] = None):
        self.address = address
        message = f"Invalid IP address: {address!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class TransportError(EdgeGuardError):
    """Fetching a range list failed (connection error or non-2xx response)."""
    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Fetching {url} failed: {message}")


class FetchTimeoutError(TransportError):
    """Fetching a range list exceeded the configured timeout."""


class ConfigurationError(EdgeGuardError):
    """Invalid matcher or source configuration detected during provisioning."""
