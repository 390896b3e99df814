"""
Exceptions raised by the recrawl reconciliation pipeline.
"""
from typing import List, Optional


class RecrawlError(Exception):
    """Base exception for recrawl errors."""

    pass


class SourceError(RecrawlError):
    """Exception raised when a fresh item supplier cannot produce a catalog."""

    pass


class KeyDerivationError(RecrawlError):
    """A required identity component was missing or empty."""

    def __init__(self, field: str, parent_product_id: Optional[str] = None,
                 message: Optional[str] = None):
        self.field = field
        self.parent_product_id = parent_product_id
        super().__init__(message or f"Missing identity component '{field}'"
                         f" (parent_product_id={parent_product_id!r})")


class MPNInconsistencyError(RecrawlError):
    """Variants of one (parent_product_id, color) group carry different MPNs."""

    def __init__(self, parent_product_id: str, color: str, mpns: List[str]):
        self.parent_product_id = parent_product_id
        self.color = color
        self.mpns = sorted(mpns)
        super().__init__(
            f"MPN mismatch for product {parent_product_id} color {color!r}: "
            f"{', '.join(self.mpns)}"
        )


class PersistenceError(RecrawlError):
    """The persistence sink failed to apply a product operation."""

    def __init__(self, message: str, parent_product_id: Optional[str] = None,
                 operation: Optional[str] = None):
        self.parent_product_id = parent_product_id
        self.operation = operation
        super().__init__(message)


class BatchAbortedError(PersistenceError):
    """A batch was rolled back after its persistence retries ran out."""

    def __init__(self, batch_number: int, cause: Exception, report=None):
        self.batch_number = batch_number
        self.cause = cause
        self.report = report
        super().__init__(
            f"Batch {batch_number} aborted: {cause}",
            parent_product_id=getattr(cause, 'parent_product_id', None),
            operation=getattr(cause, 'operation', None),
        )


class CatalogValidationError(RecrawlError):
    """Strict validation found errors that block export."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        preview = "; ".join(self.errors[:5])
        more = f" (+{len(self.errors) - 5} more)" if len(self.errors) > 5 else ""
        super().__init__(f"{len(self.errors)} validation error(s): {preview}{more}")
