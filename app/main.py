from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text
from app.config import settings
from app.database.connection import close_db, engine
from app.controllers.auth_controller import router as auth_router
from app.controllers.phone_number_controller import router as phone_number_router
from app.controllers.admin_phone_number_controller import router as admin_phone_number_router
from app.services.notification_service import NotificationDispatcher
import logging
import time

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all incoming requests"""
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        logger.info(f"🌐 Request: {request.method} {request.url.path} from {client_ip}")
        if request.url.query:
            logger.debug(f"📍 Query: {request.url.query}")

        if request.method in ["POST", "PUT", "PATCH"]:
            content_type = request.headers.get("content-type", "")
            content_length = request.headers.get("content-length", "unknown")
            logger.debug(f"📍 Body: Content-Type={content_type}, Length={content_length}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(f"✅ Response: {response.status_code} for {request.method} {request.url.path} ({process_time:.3f}s)")

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Test database connection on startup (non-blocking - don't fail startup)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.warning(f"⚠️ Database connection failed on startup: {str(e)}")
        logger.warning("⚠️ App will continue, but database-dependent features may not work")

    if not settings.smtp_configured:
        logger.warning("⚠️ SMTP is not configured; notification emails will be recorded as failed")

    yield

    # Cleanup on shutdown
    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {str(e)}")


app = FastAPI(
    title="Numbering API",
    description="Phone number assignment and billing",
    version="1.0.0",
    lifespan=lifespan
)

app.state.notification_dispatcher = NotificationDispatcher.from_settings(settings)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"⚠️ Validation failed for {request.method} {request.url.path}: {len(exc.errors())} errors")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "details": jsonable_encoder(exc.errors())},
    )


# Add request logging middleware first (runs before CORS)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(phone_number_router)
app.include_router(admin_phone_number_router)


@app.get("/")
async def root():
    return {"message": "Numbering API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
