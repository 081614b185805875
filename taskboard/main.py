from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskboard.db import init_db
from taskboard.core import get_settings
from taskboard.core.exceptions import TaskboardError
from taskboard.api.v1 import api_router
from taskboard.core.middleware import RequestLoggingMiddleware
from taskboard.logs.server_log import api_logger

# Get application settings
settings = get_settings()


# Lifespan event handler
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    try:
        await init_db()
        api_logger.info("Database initialized successfully")
    except Exception as e:
        api_logger.error(f"Error initializing database: {e}")
        raise

    yield


# Initialize FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for collaborative kanban boards with ordered lists and tasks",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600,
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(TaskboardError)
async def taskboard_error_handler(request: Request, exc: TaskboardError):
    if exc.status_code >= 500:
        api_logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Include API router
app.include_router(api_router)


@app.get("/")
async def root(request: Request):
    """Health check endpoint"""
    api_logger.info(f"Received health check request: {request.method} {request.url}")
    return {"message": f"{settings.PROJECT_NAME} is running"}


if __name__ == "__main__":
    import uvicorn
    print("\033[1;36m" + "=" * 50 + "\033[0m")  # Cyan
    print("\033[1;36m" + "  Запуск API сервера канбан-доски" + "\033[0m")  # Cyan
    print("\033[1;36m" + "=" * 50 + "\033[0m")  # Cyan

    api_logger.info("Сервер запускается на http://0.0.0.0:8000")

    uvicorn.run(
        "taskboard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
