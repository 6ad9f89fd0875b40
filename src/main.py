"""
Sparkbid Backend - application factory.

``create_application`` wires the process-wide collaborators onto
``app.state``: the keyed job locks, the live session registry and the
notification dispatcher. Tests build their own app pointed at a scratch
database and a fake push gateway.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.database import async_session_maker, close_db, init_db
from src.core.exceptions import register_exception_handlers, request_id_of
from src.core.locks import KeyedLocks
from src.core.logging import configure_logging, get_logger, log_context
from src.core.sentry import init_sentry
from src.modules.notifications.dispatcher import NotificationDispatcher
from src.modules.notifications.push import FirebasePushGateway, PushGateway
from src.modules.notifications.sessions import SessionRegistry

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting Sparkbid Backend", environment=settings.environment, version=settings.app_version)
    if settings.run_db_init:
        await init_db()
        logger.info("Database tables created")

    await app.state.dispatcher.start()
    yield

    logger.info("Shutting down Sparkbid Backend")
    # Flush events of requests that already committed before dropping the pool
    await app.state.dispatcher.stop()
    await close_db()


TAGS_METADATA = [
    {
        "name": "Auth",
        "description": "Current user's profile. Electricians toggle availability here to join the job feed.",
    },
    {
        "name": "Jobs",
        "description": """
**Job lifecycle**

`open` -> `bidding` -> `in_progress` -> `completed`, or `cancelled` from any
non-terminal state. Completing releases the escrow; cancelling refunds it.
        """,
    },
    {
        "name": "Bids",
        "description": """
**Bidding**

One active bid per electrician per job. The owner accepts exactly one bid;
every other pending bid is rejected in the same transaction.
        """,
    },
    {
        "name": "Escrow",
        "description": "Held amount for the accepted bid and the payment provider callback.",
    },
    {
        "name": "Conversations",
        "description": "Owner <-> accepted electrician messaging. Archived when the job ends.",
    },
    {
        "name": "Notifications",
        "description": "Push device tokens used while a user has no live session.",
    },
    {
        "name": "Realtime",
        "description": "SSE and WebSocket sessions carrying lifecycle events.",
    },
]


API_DESCRIPTION = """
# Sparkbid API

Marketplace for on-demand electrician jobs: citizens post jobs, electricians
bid, the owner accepts one bid, the accepted amount is held in escrow until
the job is completed.

## Errors

Every error uses the same envelope:

```json
{"error": {"code": "BID_ALREADY_DECIDED", "message": "...", "details": {}}}
```
"""


def create_application(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    push_gateway: PushGateway | None = None,
) -> FastAPI:
    """
    Build the API.

    ``session_maker`` and ``push_gateway`` are injectable so the notification
    dispatcher can be pointed at a test database and a fake push sender.
    """
    app = FastAPI(
        title="Sparkbid API",
        summary="Job bidding marketplace for electricians",
        description=API_DESCRIPTION,
        version=settings.app_version,
        openapi_tags=TAGS_METADATA,
        swagger_ui_parameters={"docExpansion": "list", "persistAuthorization": True},
        default_response_class=ORJSONResponse,
        debug=settings.debug,
        lifespan=lifespan,
    )

    sessions = SessionRegistry(queue_size=settings.session_queue_size)
    app.state.locks = KeyedLocks()
    app.state.sessions = sessions
    app.state.dispatcher = NotificationDispatcher(
        sessions,
        push_gateway or FirebasePushGateway(settings.firebase_credentials_path, settings.firebase_project_id),
        session_maker or async_session_maker,
        max_push_attempts=settings.push_max_attempts,
        retry_backoff=settings.push_retry_backoff_seconds,
        queue_size=settings.notification_queue_size,
    )

    init_sentry()
    register_exception_handlers(app)

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request_id_of(request)
        with log_context(request_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    if settings.prometheus_enabled:
        from src.core.metrics import MetricsMiddleware
        app.add_middleware(MetricsMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str | int | bool]:
        return {
            "status": "healthy",
            "service": "sparkbid-backend",
            "dispatcher_running": app.state.dispatcher.running,
            "live_sessions": await app.state.sessions.count(),
        }

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        return {
            "service": "Sparkbid Backend",
            "version": settings.app_version,
            "docs": "/docs" if settings.debug else "disabled",
        }

    return app


def _include_routers(app: FastAPI) -> None:
    """Every module router goes under /api/v1; /metrics stays at the root."""
    from src.core.metrics import router as metrics_router
    from src.modules.auth.router import router as auth_router
    from src.modules.bids.router import router as bids_router
    from src.modules.conversations.router import router as conversations_router
    from src.modules.escrow.router import router as escrow_router
    from src.modules.jobs.router import router as jobs_router
    from src.modules.notifications.router import router as notifications_router
    from src.modules.realtime.router import router as realtime_router

    modules = {
        "auth": auth_router,
        "jobs": jobs_router,
        "bids": bids_router,
        "escrow": escrow_router,
        "conversations": conversations_router,
        "notifications": notifications_router,
        "realtime": realtime_router,
    }
    for router in modules.values():
        app.include_router(router, prefix=settings.api_v1_str)

    if settings.prometheus_enabled:
        app.include_router(metrics_router)

    logger.info("Routers registered", modules=list(modules), api_prefix=settings.api_v1_str)


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
