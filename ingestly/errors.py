"""Error taxonomy shared by the ingestion services and the HTTP routers.

``InputRejected`` derives from :class:`ValueError` and the transient network
errors from :class:`RuntimeError`, so call sites that catch
``(ValueError, httpx.HTTPError, RuntimeError)`` keep working unchanged.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for every error raised by the ingestion services."""


class InputRejected(IngestError, ValueError):
    """Untrusted input failed validation and must not be retried."""


class ProcessingFailure(InputRejected):
    """The image library could not decode or re-encode the bytes.

    An unparseable "image" is indistinguishable from a crafted payload, so
    this is handled exactly like any other rejection.
    """


class ResourceExceeded(IngestError):
    """A quota ceiling (file, project, extraction run or AI budget) was hit."""

    def __init__(
        self,
        message: str,
        current_usage: float = 0,
        limit: float = 0,
        unit: str = "MB",
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.current_usage = current_usage
        self.limit = limit
        self.unit = unit
        self.retry_after = retry_after


class TransientNetworkFailure(IngestError, RuntimeError):
    """A fetch failed for reasons that may not repeat (timeouts, redirects, …)."""


class TooManyRedirects(TransientNetworkFailure):
    pass


class ResponseTooLarge(TransientNetworkFailure):
    pass


class RunBudgetExceeded(ResourceExceeded):
    """Saving an image would push an extraction run past its byte budget."""


class AssetNotFound(IngestError, LookupError):
    """No asset with this id is visible to the caller."""
