"""
Error types.

Read paths (search, hints, context descriptions) degrade to empty results and
log. Write paths (insert, update, delete, collection creation) raise one of
these so the caller can decide. Conflicts between facts are not errors; they
are MemoryActions.
"""

from typing import Optional


class RecollectError(Exception):
    """Base class for everything this package raises on purpose."""


class ConfigurationError(RecollectError):
    """Settings are missing or invalid."""


class VectorStoreError(RecollectError):
    """Something went wrong talking to the vector database."""


class VectorStoreConnectionError(VectorStoreError):
    """Could not create or reach the vector database client."""


class CircuitOpenError(VectorStoreError):
    """The circuit breaker is open; connection attempts are refused until cooldown ends."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker is open, retry in {retry_after:.1f}s")


class DimensionMismatchError(VectorStoreError):
    """A vector or collection does not have the expected dimension."""

    def __init__(self, expected: int, actual: Optional[int], where: str = "collection"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Invalid embedder dimension for {where}: expected {expected}, got {actual}"
        )


class CollectionNotReadyError(VectorStoreError):
    """A collection the coordinator reported ready could not be fetched."""


class ProviderError(RecollectError):
    """An external model provider failed."""


class EmbeddingError(ProviderError):
    """The embedder failed or returned something unusable."""


class LlmResponseError(ProviderError):
    """The LLM call failed or its reply was not the JSON we asked for."""


class MalformedFactError(RecollectError):
    """A stored payload is missing fields every fact must have."""

    def __init__(self, fact_id: str, missing: list[str]):
        self.fact_id = fact_id
        self.missing = missing
        super().__init__(f"Stored fact {fact_id} is malformed, missing: {', '.join(missing)}")


class InitializationError(RecollectError):
    """The orchestrator could not bring its collection up."""


class InvalidMessageError(RecollectError, ValueError):
    """A message handed to the orchestrator is unusable."""


class ProcessingError(RecollectError):
    """A processing pass (episode or turn) failed."""
