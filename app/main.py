# app/main.py
import uvicorn
import os
import logging
from datetime import datetime
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.utils import get_openapi
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from app.core.config import settings
from app.core.database import AsyncSessionLocal, create_db_and_tables
from app.core.exceptions import GenerationError, PlanLimitReached, StoreError, ThreadRenameError
from app.core.auth import (
    fastapi_users,
    auth_backend,
    UserRead,
    UserCreate,
)
from app.api.v1.api import api_router
from app.services.workspaces import WorkspaceRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    openapi_tags=[
        {"name": "Authentication", "description": "Operations related to authentication"},
        {"name": "Goals", "description": "Financial goals, their images and tasks"},
        {"name": "Tasks", "description": "Task completion and quizzes"},
        {"name": "Chat", "description": "AI assistant chat threads"},
        {"name": "Subscription", "description": "Plans and daily usage limits"},
        {"name": "Notifications", "description": "Real-time notifications"},
    ],
)

# Background work of every signed-in user hangs off these
app.state.session_factory = AsyncSessionLocal
app.state.workspaces = WorkspaceRegistry(session_factory=AsyncSessionLocal)

def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    # Add both OAuth2 password flow and Bearer token authentication
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "OAuth2PasswordBearer": {
            "type": "oauth2",
            "flows": {
                "password": {
                    "tokenUrl": "/api/v1/auth/jwt/login",
                    "scopes": {}
                }
            }
        },
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer"
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

# CORS Configuration
origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",  # Local development
    "http://localhost:5173",  # Vite dev server
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------------------------------------------------------
# EXCEPTION HANDLERS
# ------------------------------------------------------------
@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "The data store is unavailable. Please try again.", "operation": exc.operation},
    )

@app.exception_handler(PlanLimitReached)
async def plan_limit_handler(request: Request, exc: PlanLimitReached):
    return JSONResponse(
        status_code=403,
        content={"detail": exc.prompt, "usage_type": exc.usage_type, "limit": exc.limit, "plan": exc.plan},
    )

@app.exception_handler(ThreadRenameError)
async def thread_rename_handler(request: Request, exc: ThreadRenameError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    logger.error(f"Generation error on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for better error responses"""
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail}
        )

    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

# ------------------------------------------------------------
# AUTHENTICATION ROUTES
# ------------------------------------------------------------

# JWT Login
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/api/v1/auth/jwt",
    tags=["Authentication"],
)

# Registration
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/api/v1/auth",
    tags=["Authentication"],
)

# ------------------------------------------------------------
# ROOT ENDPOINT
# ------------------------------------------------------------
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information"""
    return {
        "message": f"{settings.APP_NAME} is running!",
        "version": settings.VERSION
    }

# ------------------------------------------------------------
# HEALTH CHECK ENDPOINT
# ------------------------------------------------------------
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint, including database connectivity"""
    try:
        async with request.app.state.session_factory() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(status_code=503, detail=f"Service unhealthy: {str(e)}")
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }

# ------------------------------------------------------------
# BUSINESS LOGIC ROUTES
# ------------------------------------------------------------
app.include_router(api_router, prefix="/api/v1")

# ------------------------------------------------------------
# STARTUP / SHUTDOWN EVENTS
# ------------------------------------------------------------
@app.on_event("startup")
async def on_startup():
    """Startup event to create database tables"""
    try:
        await create_db_and_tables()
        logger.info("✅ Database tables created successfully")
        logger.info(f"✅ Frontend URL: {settings.FRONTEND_URL}")
        logger.info(f"✅ Backend URL: {settings.BACKEND_BASE_URL}")

        if settings.OPENAI_API_KEY:
            logger.info("✅ AI API key configured for goal content and chat")
        else:
            logger.warning("⚠️ AI API key not configured - generated content will be unavailable")
        if not settings.REPLICATE_API_TOKEN:
            logger.warning("⚠️ Replicate token not configured - goals will use preset images")

    except SQLAlchemyError as e:
        logger.error(f"❌ Startup error: {str(e)}")

@app.on_event("shutdown")
async def on_shutdown():
    await app.state.workspaces.close_all()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=False)
