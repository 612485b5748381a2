"""Pagination utilities.

List endpoints use limit/offset paging: limit defaults to 20 and is
clamped to [1, 100]; offset is never negative.

WHY PAGINATION:
- Prevents memory issues with large result sets
- Improves response time for list endpoints
- Standard REST API pattern
"""

from dataclasses import dataclass

from fastapi import Query

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@dataclass(frozen=True)
class PaginationParams:
    """Normalized limit/offset pair.

    Attributes:
        limit: Maximum number of items to return (1-100).
        offset: Number of items to skip (>= 0).
    """

    limit: int
    offset: int

    @classmethod
    def normalize(cls, limit: int | None, offset: int | None) -> "PaginationParams":
        """Clamp raw values into the accepted range.

        Args:
            limit: Requested page size. None means the default (20).
            offset: Requested offset. None or negative means 0.

        Returns:
            PaginationParams with limit in [1, 100] and offset >= 0.
        """
        if limit is None:
            limit = DEFAULT_LIMIT
        limit = max(1, min(limit, MAX_LIMIT))
        offset = max(0, offset or 0)
        return cls(limit=limit, offset=offset)


def pagination_params(
    limit: int | None = Query(
        default=None, description="Items per page (default 20, clamped to 1-100)"
    ),
    offset: int | None = Query(default=None, description="Items to skip (>= 0)"),
) -> PaginationParams:
    """FastAPI dependency for pagination query parameters.

    Out-of-range values are clamped rather than rejected.

    Usage:
        @router.get("/bookings")
        async def list_bookings(
            pagination: PaginationParams = Depends(pagination_params)
        ):
            ...
    """
    return PaginationParams.normalize(limit, offset)
