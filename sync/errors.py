"""Exceptions raised during catalog synchronization."""
from typing import Optional


class SyncError(Exception):
    """Base class for sync failures."""


class IntegrationNotFoundError(SyncError):
    """The integration record does not exist."""


class ProviderNotApplicableError(SyncError):
    """The integration belongs to a provider this sync cannot handle."""


class ConfigurationError(SyncError):
    """The integration configuration is missing required fields."""


class ProviderFetchError(SyncError):
    """A provider request failed (network, timeout, non-2xx or malformed body)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FacetResolutionError(SyncError):
    """Category facets could not be resolved."""


class ItemProcessingError(SyncError):
    """Transforming or dispatching a single item failed."""


class DispatchError(ItemProcessingError):
    """The catalog-ingestion service rejected or failed a request."""
