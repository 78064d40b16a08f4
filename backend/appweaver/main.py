from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from appweaver.core.config import settings
from appweaver.core.database import init_db, close_db
from appweaver.core.exceptions import AppWeaverError, ResourceNotFoundError, ValidationError, error_response
from appweaver.core.logging_config import logger
from appweaver.core.middleware import RequestLoggingMiddleware
from appweaver.core.redis_client import redis_client
from appweaver.api.v1.router import api_router
import appweaver.models  # Import models so metadata knows about them


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info("=" * 60)
    logger.info("Starting AppWeaver API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("[Startup] Database tables ready")
    except Exception as e:
        logger.error(f"[Startup] Failed to initialize database: {e}")

    try:
        await redis_client.connect()
    except Exception:
        logger.warning("[Startup] Redis not available - progress relay and health checks will degrade")

    yield

    logger.info("Shutting down AppWeaver API...")
    await redis_client.disconnect()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="Parallel tool execution for AI app generation",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


def status_code_for(exc: AppWeaverError) -> int:
    if isinstance(exc, ResourceNotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    return 500


@app.exception_handler(AppWeaverError)
async def appweaver_exception_handler(request: Request, exc: AppWeaverError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}", exc_info=True)
    return JSONResponse(status_code=status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "health": f"/api/{settings.API_VERSION}/health"
    }


app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


def run():
    """Console entry point: serve the API with uvicorn"""
    import uvicorn
    uvicorn.run(
        "appweaver.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
