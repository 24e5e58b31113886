"""
Error types for Tessie Assistant.

"No data" and "low confidence" outcomes are returned as values, not raised.
These exceptions cover the cases callers must handle differently.
"""


class TessieAssistantError(Exception):
    """Base exception carrying the HTTP status it maps to."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class InvalidInputError(TessieAssistantError):
    """Malformed drive records or tool parameters."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class TessieAPIError(TessieAssistantError):
    """The upstream Tessie API failed or returned an unexpected payload."""
    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class ConfigurationError(TessieAssistantError):
    """Missing access token or unreadable settings."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
