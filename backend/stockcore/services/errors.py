"""
Typed errors for the stock core.

TAXONOMY:
- MissingEntityError: product / unit / order / customer not found.
  Per cart line: logged, line skipped, processing continues.
- ResolutionError: acting user or packaging unit cannot be resolved.
  Per cart line: logged, degraded write (ledger skipped or fallback used).
- CartError: malformed cart line or order. Critical: always propagates to
  the caller of the top-level operation.
- ImmutabilityViolationError: attempt to rewrite or delete a stock movement.
"""


class StockError(Exception):
    """Base class for stock core errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class MissingEntityError(StockError):
    """Raised when a referenced product, unit, order or customer does not exist."""


class ResolutionError(StockError):
    """Raised when an acting user or packaging unit cannot be resolved."""


class CartError(StockError):
    """Raised for malformed cart lines or orders."""


class ImmutabilityViolationError(StockError):
    """Raised when a written stock movement would be modified or deleted."""
