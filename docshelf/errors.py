# docshelf/errors.py
"""
Error taxonomy shared by the adapters, the reconciliation layer and the HTTP surface.

Every error carries the HTTP status it maps to; the API turns any of them into
``{"ok": false, "error": message}``. Nothing here is retried.
"""


class DocshelfError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DocshelfError):
    """Missing or malformed input."""

    status_code = 400


class UnprocessableContentError(DocshelfError):
    """Input was well formed but its content cannot be used (e.g. a PDF with no text)."""

    status_code = 422


class UpstreamError(DocshelfError):
    """Object store, metadata store or AI provider failure; message passed through."""

    status_code = 500


class ObjectExistsError(UpstreamError):
    def __init__(self, path: str, message: str = "The resource already exists"):
        super().__init__(message)
        self.path = path


class ConfigurationError(DocshelfError):
    """A required environment value is missing."""

    status_code = 500
