"""Pagination helpers."""

from app.core.exceptions import LedgerValidationError


def paginate(limit: int, offset: int, max_limit: int = 200) -> tuple[int, int]:
    """Validate limit/offset and cap limit at max_limit; return (limit, offset)."""
    if limit < 1:
        raise LedgerValidationError("limit must be at least 1", details={"limit": limit})
    if offset < 0:
        raise LedgerValidationError("offset must not be negative", details={"offset": offset})
    return min(limit, max_limit), offset


def has_more(total: int, limit: int, offset: int) -> bool:
    return total > offset + limit
