"""API v1 router package."""

from fastapi import APIRouter

from clinicalforge.api.v1 import auth, dashboard, submissions

router = APIRouter(prefix="/api/v1")

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(submissions.router, prefix="/submissions", tags=["submissions"])
router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])
