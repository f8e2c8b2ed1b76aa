"""
API Router.

Combines all API endpoints under the configured prefix.
"""

from fastapi import APIRouter

from forum_service.api.endpoints import forum

router = APIRouter()

# Include endpoint routers
router.include_router(forum.router, prefix="/forum", tags=["Forum"])
