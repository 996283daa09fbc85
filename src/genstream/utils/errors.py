"""
Error handling framework for genstream.

This module provides the error taxonomy used by the streaming core:
- Hierarchical exception classes
- Error kinds reported to stream consumers
- Error context preservation
- Structured error responses
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Kind of failure reported to stream consumers."""
    TRANSPORT = "transport"
    AUTH = "auth"
    DECODE = "decode"
    EMPTY_STREAM = "empty_stream"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class GenstreamError(Exception):
    """Base exception for all genstream errors."""

    code: str = "GENSTREAM_ERROR"
    default_message: str = "An error occurred in genstream"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    kind: Optional[ErrorKind] = None
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize genstream error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "kind": self.kind.value if self.kind else None,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "session_id": self.context.session_id,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


class ConfigurationError(GenstreamError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Verify GENSTREAM_* environment variables"
        ]


# Session-level errors

class StreamError(GenstreamError):
    """Failure that terminates a stream session."""
    code = "STREAM_ERROR"
    default_message = "Stream failed"
    category = ErrorCategory.NETWORK
    kind = ErrorKind.TRANSPORT


class TransportError(StreamError):
    """The byte source failed to open or read."""
    code = "TRANSPORT_ERROR"
    default_message = "Stream transport failed"
    is_retryable = True

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)
        # Client errors other than throttling will fail the same way again
        if status is not None and 400 <= status < 500 and status != 429:
            self.is_retryable = False

    def get_suggestions(self) -> List[str]:
        return [
            "Check your network connection",
            "Retry the generation request"
        ]


class AuthError(StreamError):
    """The backend rejected the credential."""
    code = "AUTH_ERROR"
    default_message = "Authentication failed"
    category = ErrorCategory.AUTHENTICATION
    severity = ErrorSeverity.WARNING
    kind = ErrorKind.AUTH

    def get_suggestions(self) -> List[str]:
        return ["Sign in again to refresh the access token"]


class EmptyStreamError(StreamError):
    """The source closed without content and without a completion marker."""
    code = "EMPTY_STREAM"
    default_message = "Stream closed without producing any content"
    category = ErrorCategory.PROTOCOL
    severity = ErrorSeverity.WARNING
    kind = ErrorKind.EMPTY_STREAM


# Line-level errors

class DecodeError(GenstreamError):
    """A single line could not be decoded; always recovered locally."""
    code = "DECODE_ERROR"
    default_message = "Line could not be decoded"
    category = ErrorCategory.PROTOCOL
    severity = ErrorSeverity.DEBUG
    kind = ErrorKind.DECODE


# Export public API
__all__ = [
    'ErrorSeverity',
    'ErrorCategory',
    'ErrorKind',
    'ErrorContext',
    'GenstreamError',
    'ConfigurationError',
    'StreamError',
    'TransportError',
    'AuthError',
    'EmptyStreamError',
    'DecodeError',
]
