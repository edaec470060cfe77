"""Exception taxonomy for the web tools."""


class WebToolsError(Exception):
    """Base class for all web tool failures."""


class ToolInputError(WebToolsError, ValueError):
    """A required tool parameter is missing or unusable."""


class ConfigurationError(WebToolsError):
    """A provider credential or setting is missing."""


class ProviderRequestError(WebToolsError):
    """Transport failure or non-2xx status from an upstream provider."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(WebToolsError):
    """The upstream answered, but not in the agreed shape."""


class ResultNotFoundError(WebToolsError, LookupError):
    """Unknown response id, query, URL or index."""


class OperationAborted(WebToolsError):
    """The caller's cancellation token fired."""
