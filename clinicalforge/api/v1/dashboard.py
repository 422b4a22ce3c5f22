"""Dashboard API. Reads here never fail; they degrade to empty stats."""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from clinicalforge.api.v1.auth import get_current_user, require_admin
from clinicalforge.dependencies import get_dashboard_service, get_profile_service
from clinicalforge.models import User
from clinicalforge.schemas.dashboard import (
    DashboardStats,
    ProfileAnalytics,
    SystemMetrics,
    UserProfile,
)
from clinicalforge.services.dashboard import DashboardService
from clinicalforge.services.profile_analytics import ProfileAnalyticsService

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    current_user: User = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.get_dashboard_stats()


@router.get("/live", response_model=DashboardStats)
async def live_dashboard_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Latest snapshot pushed by the real-time subscription, computed on demand before the first push."""
    snapshot = getattr(request.app.state, "latest_dashboard", None)
    if snapshot is None:
        snapshot = await service.get_dashboard_stats()
    return snapshot


@router.get("/metrics", response_model=SystemMetrics)
async def system_metrics(
    admin: User = Depends(require_admin),
    service: DashboardService = Depends(get_dashboard_service),
):
    return await service.get_system_metrics()


@router.get("/export")
async def export_dashboard(
    admin: User = Depends(require_admin),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Dashboard stats and system metrics as a downloadable JSON file."""
    export = await service.export_dashboard_data()
    filename = f"clinicalforge-dashboard-{export.export_date:%Y-%m-%d}.json"
    body = json.dumps(export.model_dump(mode="json", by_alias=True), indent=2)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/profile", response_model=ProfileAnalytics)
async def profile_analytics(
    current_user: User = Depends(get_current_user),
    service: ProfileAnalyticsService = Depends(get_profile_service),
):
    profile = UserProfile(
        uid=current_user.uid,
        display_name=current_user.display_name,
        institution=current_user.institution,
        specialty=current_user.specialty,
        role=current_user.role.value,
    )
    return await service.get_profile_analytics(current_user.uid, profile)
