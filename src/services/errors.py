# src/services/errors.py

"""Error taxonomy for the price engine.

Only ``ProductNotFound`` / ``RetailerNotFound`` ever reach a synchronous
caller.  Source and cache errors are caught and logged at the boundary
that owns them; ``JobExhausted`` is only ever logged.
"""


class PriceEngineError(Exception):
    """Base class for all engine errors."""


class ProductNotFound(PriceEngineError):
    """The requested product id is not in the catalog."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class RetailerNotFound(PriceEngineError):
    """The requested retailer id is unknown."""

    def __init__(self, retailer_id: str) -> None:
        super().__init__(f"Retailer not found: {retailer_id}")
        self.retailer_id = retailer_id


class SourceUnavailable(PriceEngineError):
    """An adapter is not configured (missing credentials, selectors...)."""


class SourceError(PriceEngineError):
    """Network, HTTP or parse failure inside a source adapter."""


class CacheError(PriceEngineError):
    """A cache entry could not be written or read back."""


class JobExhausted(PriceEngineError):
    """A job failed on its final permitted attempt."""

    def __init__(self, queue: str, job_id: int, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Job {job_id} on '{queue}' exhausted after "
            f"{attempts} attempts: {last_error}"
        )
        self.queue = queue
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
