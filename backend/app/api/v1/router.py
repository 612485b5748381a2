"""API v1 router aggregator.

All v1 endpoint routers are included here under the /api/v1 prefix.
"""

from fastapi import APIRouter

from app.api.v1 import admin, auth, bookings, guest_access

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(
    guest_access.router, prefix="/guest/access", tags=["guest-access"]
)

# =============================================================================
# Core Resource Routers
# =============================================================================

router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])

# =============================================================================
# Admin
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
