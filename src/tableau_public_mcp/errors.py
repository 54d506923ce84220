"""Typed failures raised by the resource-access layer.

Every failure that crosses the gateway boundary is a ``GatewayError``.
``describe_error`` turns one into the user-facing message and details shown
by the MCP tools.
"""

from typing import Any


class GatewayError(Exception):
    """Base class for all resource-access failures."""


class FetchError(GatewayError):
    """An outbound call failed before a usable response arrived."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class UpstreamError(FetchError):
    """The upstream API answered with a non-success outcome."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message, url=url)
        self.status_code = status_code


class UpstreamNotFound(UpstreamError):
    """The upstream API reported that the resource does not exist (404)."""


class FetchTimeoutError(FetchError, TimeoutError):
    """An outbound call exceeded its deadline."""


class DecodeError(GatewayError):
    """Fetched bytes are not a recognized image."""


class ConfigError(GatewayError):
    """A tunable is invalid at startup."""


def describe_error(error: BaseException, context: str) -> tuple[str, dict[str, Any]]:
    """Map a failure onto a user-facing message and details.

    Args:
        error: The exception raised while serving a request
        context: What was being done, e.g. "fetching user profile"

    Returns:
        Tuple of (message, details)
    """
    if isinstance(error, UpstreamNotFound):
        return f"Resource not found while {context}", {
            "url": error.url,
            "status": error.status_code,
            "suggestion": "Please verify the username, workbook name, or other identifiers are correct",
        }

    if isinstance(error, UpstreamError):
        status = error.status_code
        details: dict[str, Any] = {"url": error.url, "status": status}
        if status == 400:
            details["suggestion"] = "Please check that all parameters are valid"
            return f"Invalid request while {context}", details
        if status == 403:
            details["suggestion"] = "The requested resource may be private or restricted"
            return f"Access forbidden while {context}", details
        if status == 429:
            details["suggestion"] = "Please wait before making more requests"
            return f"Rate limit exceeded while {context}", details
        if status is not None and 500 <= status < 600:
            details["suggestion"] = (
                "The Tableau Public service may be experiencing issues. Please try again later"
            )
            return f"Tableau Public server error while {context}", details
        if status is None:
            details["message"] = str(error)
            return f"Invalid response while {context}", details
        return f"HTTP error {status} while {context}", details

    if isinstance(error, FetchTimeoutError):
        return f"Request timed out while {context}", {
            "url": error.url,
            "suggestion": "The Tableau Public server may be slow. Try again later.",
        }

    if isinstance(error, FetchError):
        return f"Network error while {context}", {
            "message": str(error),
            "suggestion": "Please check your internet connection and try again",
        }

    if isinstance(error, DecodeError):
        return f"Could not decode image while {context}", {"message": str(error)}

    return f"Unexpected error while {context}", {
        "message": str(error),
        "name": type(error).__name__,
    }
