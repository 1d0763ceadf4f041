import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from school_library.config import settings
from school_library.database import engine, Base
from school_library.routes import books, circulations, reservations, fines, maintenance
from school_library.services.exceptions import LibraryError
from school_library.services.notifications import notification_service
from school_library.services.scheduler import sweep_scheduler
import school_library.models  # noqa: F401  registers every table on Base.metadata

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log incoming requests."""
    async def dispatch(self, request: Request, call_next):
        auth_header = request.headers.get("Authorization")
        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} - IP: {client_ip} - Auth: {'Present' if auth_header else 'Missing'}")

        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager to start/stop the notification sink and sweep scheduler with FastAPI."""
    logger.info("Starting notification service...")
    notification_service.connect()
    sweep_scheduler.start()

    yield

    logger.info("Stopping background services...")
    sweep_scheduler.stop()
    notification_service.disconnect()


app = FastAPI(
    title="School Library API",
    description="Circulation, reservation and fine engine for the school library",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(LoggingMiddleware)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} - {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


# Include routers
app.include_router(books.router)
app.include_router(circulations.router)
app.include_router(reservations.router)
app.include_router(fines.router)
app.include_router(maintenance.router)

@app.get("/")
async def root():
    return {"message": "School Library API", "version": "1.0.0"}

@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    ssl_kwargs = {}
    if settings.ssl_enabled and settings.ssl_certfile and settings.ssl_keyfile:
        ssl_kwargs = {"ssl_certfile": settings.ssl_certfile, "ssl_keyfile": settings.ssl_keyfile}
    uvicorn.run(
        "school_library.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        **ssl_kwargs
    )
