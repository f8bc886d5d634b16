"""
Exception types for the HMO deal engine.

Only StoreUnavailableError is fatal to an ingestion run. Everything else is
recovered locally and surfaced through IngestionResult.errors.
"""


class DealEngineError(Exception):
    """Base class for all deal engine errors."""


class StoreUnavailableError(DealEngineError):
    """The persistence store cannot be reached."""


class DuplicateNaturalKeyError(DealEngineError):
    """A record with the same (postcode, external_id) already exists."""

    def __init__(self, postcode: str, external_id: str):
        self.postcode = postcode
        self.external_id = external_id
        super().__init__(f"Duplicate natural key: {postcode}|{external_id}")


class AdapterConfigurationError(DealEngineError):
    """An adapter was registered with an invalid configuration."""
