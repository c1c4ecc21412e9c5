import os
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from config.config import FRONTEND_URL, LOG_LEVEL, LOG_DIR, UPLOAD_DIR, is_production
from database.DB import Database
from helpers.LoggingConfig import setup_logging
from helpers.ImageUpload import PUBLIC_UPLOAD_PREFIX
from routes.errors import ServerError
from routes import AuthRouter, ClubRouter, EventRouter, PollRouter, FeedbackRouter, UserRouter, AnalyticsRouter

''' The backend API Endpoints setup '''

setup_logging(LOG_LEVEL, LOG_DIR)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Initialize database
    db = Database()
    db.connect()
    await db.detect_transaction_support()
    await db.ensure_indexes()
    app.state.db = db
    logger.info("Database connected successfully")

    yield

    # Shutdown: Clean up resources
    db.close()
    logger.info("Application shutting down")

app = FastAPI(title="Club Hub API", lifespan=lifespan)

allowed_origins = [FRONTEND_URL]
if FRONTEND_URL != "http://localhost:5173":
    allowed_origins.append("http://localhost:5173")

logger.info("CORS allowed origins: %s", allowed_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    # Starlette's own 404 for paths no router claims
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = "Route not found"
    content = {"message": message}
    if isinstance(exc, ServerError):
        logger.error("Server error on %s %s: %s", request.method, request.url.path, exc.error, exc_info=exc)
        if not is_production():
            content["error"] = exc.error
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"message": "Something went wrong!"}
    if not is_production():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/api/health")
async def health():
    return {"status": "healthy"}


os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount(PUBLIC_UPLOAD_PREFIX, StaticFiles(directory=UPLOAD_DIR), name="uploads")

# Include routers
app.include_router(AuthRouter.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(ClubRouter.router, prefix="/api/clubs", tags=["Clubs"])
app.include_router(EventRouter.router, prefix="/api/events", tags=["Events"])
app.include_router(PollRouter.router, prefix="/api/polls", tags=["Polls"])
app.include_router(FeedbackRouter.router, prefix="/api/feedback", tags=["Feedback"])
app.include_router(UserRouter.router, prefix="/api/users", tags=["Users"])
app.include_router(AnalyticsRouter.router, prefix="/api/analytics", tags=["Analytics"])
