"""Error taxonomy for the super search pipeline.

Only schema resolution failures and total extraction failures are fatal for a
run. Everything else is recovered at the unit of work that raised it.
"""
from __future__ import annotations


class SuperSearchError(Exception):
    """Base class for all pipeline errors."""


class SchemaResolutionError(SuperSearchError):
    """The classifier produced no usable schema after all retries."""


class DiscoveryPartialError(SuperSearchError):
    """Fewer entities were discovered than the schema asked for.

    Never raised to callers; kept as a typed metric payload for logging.
    """

    def __init__(self, found: int, requested: int):
        super().__init__(f"Discovered {found} of {requested} requested entities")
        self.found = found
        self.requested = requested


class ProviderError(SuperSearchError):
    """A research provider timed out or failed for one entity."""

    def __init__(self, provider: str, entity: str, reason: str):
        super().__init__(f"{provider} failed for '{entity}': {reason}")
        self.provider = provider
        self.entity = entity
        self.reason = reason


class ExtractionError(SuperSearchError):
    """Structured output for one entity could not be parsed or validated."""

    def __init__(self, entity: str, reason: str):
        super().__init__(f"Extraction failed for '{entity}': {reason}")
        self.entity = entity
        self.reason = reason


class RunFatalError(SuperSearchError):
    """The run cannot produce a result (e.g. every entity failed)."""


class QuotaExceededError(SuperSearchError):
    """The quota collaborator vetoed the run."""

    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient credits. You have {balance} credits but Super Search "
            f"requires {required} credits."
        )
        self.balance = balance
        self.required = required


class RunNotFoundError(SuperSearchError):
    """No run with the given id exists in the session store."""
