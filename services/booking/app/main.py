import os
from contextlib import asynccontextmanager
from html import escape

from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from app.core.database import Base, engine
from app.routers import bookings, projects, resources, webhooks
from app.services.payment_processor import StripePaymentProcessor
from shared import (
    EventPublisher,
    NotificationClient,
    RequestContextLogMiddleware,
    configure_logging,
    create_health_router,
    load_service_config,
)
import asyncio
import logging

logger = configure_logging("booking")
std_logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "Bookings",
        "description": "Booking lifecycle: RFQ, quotes, payment authorization, completion and cancellation.",
    },
    {
        "name": "Resources",
        "description": "Blocked ranges of professionals and employees.",
    },
    {
        "name": "Projects",
        "description": "Project configuration sync and schedule proposals.",
    },
    {
        "name": "Webhooks",
        "description": "Payment processor callbacks.",
    },
]

_CONFIG = load_service_config("booking")
_ROOT_PATH = os.getenv("APP_ROOT_PATH", "")
_EVENT_PUBLISHER = EventPublisher(_CONFIG.redis.url, _CONFIG.redis.stream) if _CONFIG.redis.url else None
_NOTIFIER = NotificationClient(
    _CONFIG.notifications.url,
    timeout=_CONFIG.notifications.timeout,
    signing_secret=_CONFIG.notifications.signing_secret,
)
_PAYMENT_PROCESSOR = StripePaymentProcessor(_CONFIG.payments.secret_key, _CONFIG.payments.webhook_secret)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    std_logger.info("Starting Booking Service...")
    for attempt in range(10):
        try:
            await asyncio.to_thread(Base.metadata.create_all, bind=engine)
            break
        except Exception as e:
            if attempt < 9:
                std_logger.warning(f"Database unavailable, retrying... attempt {attempt + 1}: {e}")
                await asyncio.sleep(2.0)
            else:
                std_logger.error("Database unavailable after 10 attempts, giving up.")
                raise

    yield

    _NOTIFIER.close()
    if _EVENT_PUBLISHER:
        _EVENT_PUBLISHER.close()
    std_logger.info("Booking Service stopped")

lifespan = app_lifespan

app = FastAPI(
    title="Booking Service",
    version="0.1.0",
    description="Bookings, resource scheduling and escrow payments for the marketplace.",
    openapi_tags=tags_metadata,
    root_path=_ROOT_PATH,
    lifespan=lifespan,
    docs_url=None,
    redoc_url="/redoc",
)

raw_origins = os.getenv("CORS_ORIGINS", "")

if raw_origins:
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
else:
    is_dev = _CONFIG.environment in ["development", "dev", "test"]
    if is_dev:
        origins = ["*"]
        std_logger.warning("CORS_ORIGINS not set. Using wildcard (*) for development. Set CORS_ORIGINS in production!")
    else:
        std_logger.error("CORS_ORIGINS not configured! Set CORS_ORIGINS environment variable.")
        origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextLogMiddleware, logger=logger)

app.state.config = _CONFIG
app.state.event_publisher = _EVENT_PUBLISHER
app.state.notifier = _NOTIFIER
app.state.payment_processor = _PAYMENT_PROCESSOR


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": "Internal server error"},
    )


def custom_openapi_schema():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    schema["openapi"] = "3.0.3"
    app.openapi_schema = schema
    return app.openapi_schema


app.openapi = custom_openapi_schema

# Swagger UI resolving openapi.json relative to the root path
@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return HTMLResponse(f"""
    <!DOCTYPE html>
    <html>
    <head>
        <link type="text/css" rel="stylesheet" href="https://cdn.jsdelivr.net/npm/swagger-ui-dist@5/swagger-ui.css">
        <title>{escape(app.title)} - Swagger UI</title>
    </head>
    <body>
        <div id="swagger-ui"></div>
        <script src="https://cdn.jsdelivr.net/npm/swagger-ui-dist@5/swagger-ui-bundle.js"></script>
        <script>
        const ui = SwaggerUIBundle({{
            url: window.location.pathname.replace(/\\/docs$/, '') + '/openapi.json',
            dom_id: '#swagger-ui',
            presets: [
                SwaggerUIBundle.presets.apis,
                SwaggerUIBundle.SwaggerUIStandalonePreset
            ],
            layout: "BaseLayout",
            deepLinking: true
        }})
        </script>
    </body>
    </html>
    """)

app.include_router(create_health_router("booking", database_engine=engine, redis_client=_CONFIG.redis.url or None))
app.include_router(bookings.router)
app.include_router(resources.router)
app.include_router(projects.router)
app.include_router(webhooks.router)


@app.get("/")
def root():
    return {
        "service": "booking",
        "status": "ok",
        "docs_url": "/docs",
        "config": {
            "redis_stream": _CONFIG.redis.stream,
            "default_currency": _CONFIG.payments.default_currency,
        },
    }
