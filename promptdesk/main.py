"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from promptdesk import __version__
from promptdesk.core.config import get_settings
from promptdesk.core.database import init_sqlmodel_tables
from promptdesk.core.errors import register_exception_handlers
from promptdesk.core.logging import configure_logging, get_logger
from promptdesk.storage.database import get_engine, init_db, seed_defaults

from promptdesk.prompts import router as prompts_router
from promptdesk.search import router as search_router
from promptdesk.peer_review import router as peer_review_router
from promptdesk.approvals import router as approvals_router
from promptdesk.audit import router as audit_router
from promptdesk.rbac import router as rbac_router
from promptdesk.governance import router as governance_router
from promptdesk.analytics import router as analytics_router
from promptdesk.reports import router as reports_router
from promptdesk.reports.service import seed_report_templates
from promptdesk.tags import router as tags_router
from promptdesk.api import notifications_router, system_router

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    configure_logging()
    settings = get_settings()
    log.info("app_starting", app=settings.app_name, version=__version__)

    init_db()
    init_sqlmodel_tables()
    if settings.seed_defaults:
        seed_defaults()
        with Session(get_engine()) as session:
            created = seed_report_templates(session)
        log.info("defaults_seeded", report_templates=created)

    yield

    # Shutdown
    from promptdesk.storage.pool import reset_connection_pool

    reset_connection_pool()
    log.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Prompt library with peer review, approval workflow, audit trail and data governance",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware - configurable via CORS_ORIGINS env var
    cors_origins = settings.cors_origins.split(",") if settings.cors_origins != "*" else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(prompts_router)        # /prompts
    app.include_router(search_router)         # /search
    app.include_router(peer_review_router)    # /peer-review
    app.include_router(approvals_router)      # /approvals
    app.include_router(audit_router)          # /audit
    app.include_router(rbac_router)           # /rbac
    app.include_router(governance_router)     # /governance
    app.include_router(analytics_router)      # /analytics
    app.include_router(reports_router)        # /reports
    app.include_router(tags_router)           # /tags
    app.include_router(notifications_router)  # /notifications
    app.include_router(system_router)         # /system

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "endpoints": {
                "prompts": "/prompts - Prompt library CRUD and version history",
                "search": "/search - Filtered search, facets, popular searches",
                "peer-review": "/peer-review/* - Submissions, reviewer matching, reviews, comments, reminders",
                "approvals": "/approvals/* - Approval queue, actions and SLA tracking",
                "audit": "/audit/* - Hash-chained audit trail and compliance reports",
                "rbac": "/rbac/* - Roles, permissions and assignments",
                "governance": "/governance/* - Retention, classification, lineage, privacy requests",
                "analytics": "/analytics/* - Usage and performance metrics",
                "reports": "/reports/* - Report generation, export and schedules",
                "tags": "/tags/* - Tag registry, prompt tagging, trending tags",
                "notifications": "/notifications/{channel} - Review and approval inboxes",
                "system": "/system/* - Table, cache and pool stats; maintenance",
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
