# Load environment variables FIRST, before any other imports
from dotenv import load_dotenv

load_dotenv()

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from sqlalchemy import text

from core.config import settings
from core.database import engine, get_db
from core.services.connection_service import ConnectionRegistry
from routers import conversations, users, websocket_chat

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting application...")
    app.state.connection_registry = ConnectionRegistry()

    yield

    # Shutdown
    logger.info("Shutting down application (open chat connections=%d)...", app.state.connection_registry.count())
    await engine.dispose()


openapi_tags = [
    {
        "name": "users",
        "description": "Registration, login, and profile for identity-provider users.",
    },
    {
        "name": "conversations",
        "description": "Listing and creating AI chat conversations.",
    },
    {
        "name": "websocket",
        "description": "Real-time chat channel with the CRM assistant.",
    },
    {
        "name": "health",
        "description": "Root and health check endpoints for verifying API availability.",
    },
]

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=(
        "Real-time AI assistant for a CRM dashboard. Chat turns are grounded in the "
        "user's contacts, recent activity, and conversation history."
    ),
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=None if settings.ENVIRONMENT == "prod" else "/docs",
    redoc_url=None if settings.ENVIRONMENT == "prod" else "/redoc",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


def custom_openapi():
    """Override OpenAPI schema generation to inject BearerAuth security scheme."""
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )
    schema["components"] = schema.get("components", {})
    schema["components"]["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = schema
    return schema


app.openapi = custom_openapi

app.include_router(users.router, prefix=f"{settings.API_V1_STR}/auth", tags=["users"])
app.include_router(conversations.router, prefix=f"{settings.API_V1_STR}/conversations", tags=["conversations"])

# WebSocket routes
app.include_router(websocket_chat.router, prefix=f"{settings.API_V1_STR}/ws")


@app.get(
    "/",
    summary="API root",
    description="Returns a welcome message. Useful for verifying the API is reachable.",
    operation_id="root",
    tags=["health"],
)
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}


@app.get(
    "/health",
    summary="Health check",
    description="Validates database connectivity. Returns HTTP 200 when healthy, HTTP 503 when unhealthy.",
    operation_id="health_check",
    tags=["health"],
    responses={
        503: {"description": "Database connection failed"},
    },
)
async def health_check(db=Depends(get_db)):
    from fastapi.responses import JSONResponse

    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})
