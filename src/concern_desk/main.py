"""
Concern Desk - Main Application
===============================

Assignment and escalation orchestrator for university student concerns.

Modules:
- Concerns: submission, lifecycle, manual assignment
- Assignment: workload tracking and cross-department balancing
- Escalation: time-based reminders and escalation sweeps
- Triage: keyword priority classification

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, state machine
- Infrastructure: Database, webhooks, scheduler, config watching
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from concern_desk.concerns.application.ports import Collaborators
from concern_desk.concerns.infrastructure.external import (
    LoggingAuditLog,
    LoggingChatChannelGateway,
    WebhookNotifier,
)
from concern_desk.concerns.interfaces import concern_router, escalation_router, workload_router
from concern_desk.config import settings
from concern_desk.escalation.infrastructure.external import EscalationConfigManager, SweepScheduler
from concern_desk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)
from concern_desk.orchestrator import build_orchestrator, sqlalchemy_uow_factory
from concern_desk.shared.api.middleware import install as install_middleware
from concern_desk.shared.infrastructure.logging import get_logger, setup_logging
from concern_desk.triage.interfaces import triage_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load escalation configuration and watch it
    4. Build the orchestrator
    5. Start the escalation sweep scheduler

    SHUTDOWN:
    1. Stop the scheduler and the config watcher
    2. Close the notifier
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info(
        "Starting Concern Desk",
        extra={"app": settings.app_name, "version": settings.app_version, "environment": settings.environment},
    )

    init_database()
    # Development convenience; production schemas are managed by migrations
    await create_tables()

    config_manager = EscalationConfigManager()
    config_manager.load(settings.escalation_config_path)
    config_manager.start_watching()

    notifier = WebhookNotifier(
        webhook_url=settings.notification_webhook_url,
        timeout_seconds=settings.notification_timeout_seconds,
    )
    orchestrator = build_orchestrator(
        sqlalchemy_uow_factory(get_session_maker()),
        Collaborators(notifier=notifier, chat=LoggingChatChannelGateway(), audit=LoggingAuditLog()),
        config_manager,
    )

    scheduler = None
    if settings.escalation_sweep_interval > 0:
        scheduler = SweepScheduler(interval_seconds=settings.escalation_sweep_interval)
        await scheduler.start(orchestrator.run_escalation_sweep)

    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.config_manager = config_manager
    app.state.scheduler = scheduler

    logger.info("Concern Desk started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Concern Desk")

    if scheduler:
        await scheduler.stop()
    config_manager.stop_watching()
    await notifier.close()
    await close_database()

    logger.info("Concern Desk shutdown complete")


app = FastAPI(
    title="Concern Desk API",
    description="""
    ## Student Concern Assignment & Escalation

    - `POST /concerns` - Submit, classify and auto-assign a concern
    - `POST /concerns/{id}/approve|reject|status|assign|escalate|emergency` - Lifecycle
    - `POST /concerns/{id}/confirm|dispute` - Student resolution feedback
    - `GET /workload/analysis` - Department load ratios
    - `POST /workload/departments/{id}/rebalance` - Execute rebalancing proposals
    - `POST /escalation/sweep` - Run an escalation sweep now
    - `POST /triage/classify` - Preview the priority classifier
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_middleware(app)

# === Include Module Routers ===
app.include_router(concern_router)
app.include_router(workload_router)
app.include_router(escalation_router)
app.include_router(triage_router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "escalation_config": "loaded" if getattr(request.app.state, "config_manager", None) else "missing",
            "escalation_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        },
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "concern_desk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info",
    )
