"""
Main FastAPI application
Offline exam server: caches a teacher's classes, runs quizzes on the local
network and syncs the results back when the internet returns
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from typing import Optional
import asyncio
import logging
import os
import sys
import threading
import time
import webbrowser

from exam_tether.config import settings
from exam_tether.database import init_db, dispose_db, is_initialized, StoreUnavailableError
from exam_tether.api import server, auth, quizzes, assignments
from exam_tether.services.download_service import run_download
from exam_tether.services.upload_service import run_upload
from exam_tether.services.state_machine import ServerStateMachine, Downloader, Uploader
from exam_tether.utils.rate_limiter import RateLimiter
from exam_tether.utils.network import find_available_port, local_ipv4_addresses, NoAvailablePortError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Polled or static paths that never count against the rate limit
RATE_LIMIT_EXEMPT_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json", "/api/server/state", "/images")


def create_app(downloader: Optional[Downloader] = None, uploader: Optional[Uploader] = None) -> FastAPI:
    """
    Build the application

    Args:
        downloader: Replaces the remote download (tests)
        uploader: Replaces the remote upload (tests)
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Offline exam server with download/upload synchronization",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.server = ServerStateMachine(
        downloader=downloader or run_download,
        uploader=uploader or run_upload,
    )
    app.state.rate_limiter = RateLimiter(
        requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
        requests_per_hour=settings.RATE_LIMIT_PER_HOUR,
    )
    app.state.background_tasks = []

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting middleware
    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """Apply rate limiting to student traffic"""

        if not settings.RATE_LIMIT_ENABLED or request.url.path.startswith(RATE_LIMIT_EXEMPT_PREFIXES):
            return await call_next(request)

        try:
            await request.app.state.rate_limiter.check_rate_limit(request)
        except HTTPException as e:
            return JSONResponse(
                status_code=e.status_code,
                content=e.detail
            )

        return await call_next(request)

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing"""

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        logger.info(
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Duration: {duration:.3f}s"
        )

        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """A failing request must never take the server down"""

        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "detail": str(exc) if settings.DEBUG else None
            }
        )

    # HTTP exception handler
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Format HTTP exceptions consistently; dict details are merged in"""

        if isinstance(exc.detail, dict):
            content = {**exc.detail, "status_code": exc.status_code}
        else:
            content = {
                "error": "http_error",
                "message": exc.detail,
                "status_code": exc.status_code
            }
        return JSONResponse(status_code=exc.status_code, content=content)

    # Malformed request bodies are client errors, not 422s
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")

        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": f"{location}: {message}" if location else message,
                "status_code": 400
            }
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Liveness probe"""
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "state": app.state.server.state.value,
            "timestamp": time.time()
        }

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "message": "Offline Exam Server",
            "version": settings.APP_VERSION,
            "state": app.state.server.state.value,
            "docs": "/docs",
            "health": "/health"
        }

    # Include routers
    app.include_router(server.router)
    app.include_router(auth.router)
    app.include_router(quizzes.router)
    app.include_router(assignments.router)

    # Downloaded question images; the directory is created at startup
    app.mount("/images", StaticFiles(directory=settings.images_dir, check_dir=False), name="images")

    # Startup event
    @app.on_event("startup")
    async def startup_event():
        """Open the local store and restore the previous state"""
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        if not is_initialized():
            init_db()
            logger.info("Database initialized successfully")

        os.makedirs(settings.images_dir, exist_ok=True)

        app.state.server.resume_from_store()

        if settings.AUTO_UPLOAD_INTERVAL_SECONDS > 0:
            task = asyncio.create_task(
                app.state.server.run_auto_upload(settings.AUTO_UPLOAD_INTERVAL_SECONDS)
            )
            app.state.background_tasks.append(task)

        logger.info("Application startup complete")

    # Shutdown event
    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info("Shutting down application")

        for task in app.state.background_tasks:
            task.cancel()

        download_task = app.state.server.download_task
        if download_task is not None and not download_task.done():
            download_task.cancel()

        dispose_db()

    return app


app = create_app()


def _print_banner(port: int) -> None:
    logger.info("=" * 55)
    logger.info("  OFFLINE EXAM SERVER READY")
    logger.info("=" * 55)
    logger.info(f"  Teacher dashboard: http://localhost:{port}/")
    addresses = local_ipv4_addresses()
    if addresses:
        logger.info("  Addresses for students (pick the hotspot network):")
        for address in addresses:
            logger.info(f"    -> http://{address}:{port}")
    else:
        logger.warning("  No network detected. Turn on the hotspot first.")
    logger.info("  Press Ctrl+C to stop the server")


def run() -> None:
    """Console entry point: open the store, pick a port, serve"""
    import uvicorn

    # Start-up failures are the only process-fatal errors
    try:
        init_db()
    except StoreUnavailableError as e:
        logger.error(f"Failed to open database: {e}")
        sys.exit(1)

    try:
        port = find_available_port(settings.HOST, settings.BASE_PORT, settings.MAX_PORT)
    except NoAvailablePortError as e:
        logger.error(str(e))
        sys.exit(1)

    _print_banner(port)

    if settings.OPEN_BROWSER:
        url = f"http://localhost:{port}/"
        threading.Timer(1.0, webbrowser.open, args=[url]).start()

    uvicorn.run(
        app,
        host=settings.HOST,
        port=port,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
