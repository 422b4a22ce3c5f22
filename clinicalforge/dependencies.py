"""FastAPI dependency wiring for the service layer.

The query cache, change notifier and session factory live on ``app.state`` so
every request shares the instances owned by the running application.
"""

from fastapi import Depends, Request
from sqlalchemy.orm import sessionmaker

from clinicalforge.config import Settings, get_settings
from clinicalforge.services.dashboard import DashboardService
from clinicalforge.services.profile_analytics import ProfileAnalyticsService
from clinicalforge.services.repository import SubmissionRepository
from clinicalforge.services.submissions import SubmissionService


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def get_repository(
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> SubmissionRepository:
    state = request.app.state
    return SubmissionRepository(
        session_factory,
        cache=state.query_cache,
        notifier=state.change_notifier,
        timeout=settings.storage_timeout_seconds,
        scorer=state.supplementary_scorer,
    )


def get_submission_service(
    request: Request,
    repository: SubmissionRepository = Depends(get_repository),
) -> SubmissionService:
    return SubmissionService(repository, scorer=request.app.state.supplementary_scorer)


def get_dashboard_service(
    repository: SubmissionRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> DashboardService:
    return DashboardService(repository, settings=settings)


def get_profile_service(
    repository: SubmissionRepository = Depends(get_repository),
) -> ProfileAnalyticsService:
    return ProfileAnalyticsService(repository)
