"""FastAPI entry point: app factory, error handlers and the live dashboard feed."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinicalforge.api.v1 import router as api_v1_router
from clinicalforge.config import get_settings
from clinicalforge.db import Base, SessionLocal, engine
from clinicalforge.errors import ClinicalForgeError, describe_error, translate_storage_error
from clinicalforge.migrations import run_migrations
from clinicalforge.models import Submission, SubmissionKeyword, User  # noqa: F401  register tables
from clinicalforge.services.cache import QueryCache
from clinicalforge.services.dashboard import DashboardService
from clinicalforge.services.notifier import ChangeNotifier
from clinicalforge.services.repository import SubmissionRepository
from clinicalforge.services.scoring import NullSupplementaryScorer, PlaceholderSupplementaryScorer
from clinicalforge.services.subscriptions import DashboardSubscription

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Application factory."""

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="ClinicalForge API", version="0.1.0")

    app.state.engine = engine
    app.state.session_factory = SessionLocal
    app.state.query_cache = QueryCache(
        maxsize=settings.cache_max_entries, ttl=settings.cache_ttl_seconds
    )
    app.state.change_notifier = ChangeNotifier()
    app.state.supplementary_scorer = (
        PlaceholderSupplementaryScorer()
        if settings.placeholder_scores_enabled
        else NullSupplementaryScorer()
    )
    app.state.live_feed_enabled = settings.live_dashboard_enabled
    app.state.latest_dashboard = None
    app.state.unsubscribe_dashboard = None

    @app.exception_handler(ClinicalForgeError)
    async def handle_domain_error(request: Request, exc: ClinicalForgeError) -> JSONResponse:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        error = translate_storage_error(exc)
        logger.warning("%s %s -> storage error: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def handle_unknown_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=describe_error(ClinicalForgeError()))

    @app.on_event("startup")
    async def init_storage_and_feed() -> None:
        """Create tables, apply SQL migrations and start the live dashboard feed."""

        Base.metadata.create_all(bind=app.state.engine)
        run_migrations(app.state.engine)
        if not app.state.live_feed_enabled:
            return

        repository = SubmissionRepository(
            app.state.session_factory,
            cache=app.state.query_cache,
            notifier=app.state.change_notifier,
            timeout=settings.storage_timeout_seconds,
        )
        subscription = DashboardSubscription(
            app.state.change_notifier, DashboardService(repository, settings=settings)
        )

        def store_snapshot(stats) -> None:
            app.state.latest_dashboard = stats

        app.state.dashboard_subscription = subscription
        app.state.unsubscribe_dashboard = subscription.subscribe(store_snapshot)

    @app.on_event("shutdown")
    async def stop_feed() -> None:
        if app.state.unsubscribe_dashboard is not None:
            app.state.unsubscribe_dashboard()
            app.state.unsubscribe_dashboard = None

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "database": app.state.engine.url.get_backend_name(),
            "cacheSize": len(app.state.query_cache),
        }

    app.include_router(api_v1_router)
    return app


app = create_app()
