import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import admin, auth, maps, pictograms, storage
from core.config import ALLOWED_CORS_ORIGINS, DEBUG
from core.errors import AppError, AuthenticationRequiredError
from db.session import init_db

# Configure logging with environment variable support
# Set LOG_LEVEL=WARNING in production to reduce noise, DEBUG for verbose output
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


tags_metadata = [
    {
        "name": "auth",
        "description": "Signup, login and the current user's profile.",
    },
    {
        "name": "maps",
        "description": "Map records, their asset files and signed transfer URLs.",
    },
    {
        "name": "pictograms",
        "description": "Shared pictogram library grouped by category.",
    },
    {
        "name": "storage",
        "description": "Signed transfers for the local-disk storage backend.",
    },
    {
        "name": "admin",
        "description": "Listing of every map, for administrators only.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    title="Cartonord API",
    description="API for authoring and publishing maps",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# CORS
if ALLOWED_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # Fallback: allow all origins; browsers reject credentials with a wildcard origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routers
app.include_router(auth.router, prefix="/api")
app.include_router(maps.router, prefix="/api")
app.include_router(pictograms.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
app.include_router(storage.router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Cartonord API is running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "Cartonord API is running"}


# Exception handlers


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, AuthenticationRequiredError):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.message}, headers=headers
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_422(request: Request, exc: RequestValidationError):
    exc_str = f"{exc}".replace("\n", " ").replace("   ", " ")
    logging.error(f"{request}: {exc_str}")
    content = {"status_code": 10422, "message": exc_str, "data": None}
    return JSONResponse(content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = "Internal server error"
    if DEBUG:
        detail = f"{detail}: {exc}"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": detail}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
