"""
Advisor API module.

- endpoints.py: session lifecycle, SSE message stream, history and profile
- helpers.py: SSE event formatting
"""

from fastapi import APIRouter

from .endpoints import router as endpoints_router

router = APIRouter(prefix="/api/advisor", tags=["advisor"])
router.include_router(endpoints_router)

__all__ = ["router"]
