"""
Error taxonomy for the enrichment pipeline.

SourceUnavailable and TransientNetworkError are recovered inside the resolver
by advancing to the next tier. ConfigurationError disables a tier for the
process lifetime. StorageWriteError never fails a resolution. BatchPartialFailure
carries the outcomes that did complete when a batch's paid call blew up.
"""


class EnrichmentError(Exception):
    """Base class for all pipeline errors."""


class SourceUnavailable(EnrichmentError):
    """A tier's backend returned no usable data (private, not found, malformed)."""

    def __init__(self, source, detail=''):
        self.source = source
        self.detail = detail
        super().__init__(f"{source}: {detail}" if detail else source)


class TransientNetworkError(EnrichmentError):
    """Timeout, connection reset or non-2xx response from a tier."""

    def __init__(self, source, detail=''):
        self.source = source
        self.detail = detail
        super().__init__(f"{source}: {detail}" if detail else source)


class ConfigurationError(EnrichmentError):
    """Required credentials or settings are missing."""


class StorageWriteError(EnrichmentError):
    """Image bytes were fetched but could not be written to blob storage."""


class BatchPartialFailure(EnrichmentError):
    """The paid call of a batch failed; `result` holds what did resolve."""

    def __init__(self, usernames, cause, result=None):
        self.usernames = list(usernames)
        self.cause = cause
        self.result = result
        super().__init__(f"paid tier failed for {len(self.usernames)} usernames: {cause}")
