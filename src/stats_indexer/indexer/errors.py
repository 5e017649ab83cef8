"""Error taxonomy for the indexer.

NotFound is raised by point lookups; reindex paths report missing ids instead.
TransientIOFailure wraps store I/O errors and is safe to retry.
ConfigurationError is fatal and never retried.
"""
from __future__ import annotations


class IndexerError(Exception):
    pass


class NotFound(IndexerError):
    def __init__(self, natural_id, what: str = "product"):
        super().__init__(f"{what} {natural_id} not found")
        self.natural_id = natural_id


class TransientIOFailure(IndexerError):
    pass


class ConfigurationError(IndexerError):
    pass


class IndexBusy(IndexerError):
    """Another reindex holds the per-index lock."""


class ConfirmationRequired(IndexerError):
    pass


class AlreadyExists(IndexerError):
    pass
