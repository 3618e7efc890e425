import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

# Import models so every table is registered with Base before create_all
from . import models  # noqa: F401
from .auth import FirebaseTokenVerifier
from .cache import TTLCache
from .config import (
    ALLOWED_ORIGINS,
    FIREBASE_CREDENTIALS_PATH,
    FIREBASE_PROJECT_ID,
    PUBLIC_KEY_CACHE_TTL,
    REDIS_URL,
)
from .database import Base, engine
from .domain.bookings import qr_router
from .domain.bookings import router as bookings_router
from .email_service import Mailer
from .firebase import FirebaseClient
from .routes.access_codes import router as access_codes_router
from .routes.admin import router as admin_router
from .routes.amenities import AMENITY_LIST_TTL
from .routes.amenities import router as amenities_router
from .routes.auth import router as auth_router
from .routes.cron import router as cron_router
from .routes.notifications import router as notifications_router
from .routes.onboarding import router as onboarding_router
from .routes.users import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    app.state.token_verifier = FirebaseTokenVerifier(
        FIREBASE_PROJECT_ID,
        TTLCache("google_certs", default_ttl=PUBLIC_KEY_CACHE_TTL, redis_url=REDIS_URL),
    )
    app.state.amenity_cache = TTLCache("amenities", default_ttl=AMENITY_LIST_TTL, redis_url=REDIS_URL)
    app.state.mailer = Mailer()
    app.state.firebase_client = FirebaseClient(FIREBASE_PROJECT_ID, FIREBASE_CREDENTIALS_PATH)

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="CircleIn API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    A missing or malformed Authorization header is an authentication failure
    (401); every other validation problem is a bad request (400)
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    details = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.warning(f"Validation error for {request.url.path}: {details}")
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(StaleDataError)
@app.exception_handler(IntegrityError)
async def conflict_exception_handler(request: Request, exc: Exception):
    """A concurrent writer changed the same document first"""
    logger.warning(f"⚠️ Write conflict on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"error": "The record was modified by another request. Please retry."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ {request.method} {request.url.path} - Unhandled error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


# Log CORS configuration for debugging
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(bookings_router, prefix="/api")
app.include_router(qr_router, prefix="/api")
app.include_router(cron_router, prefix="/api")
app.include_router(onboarding_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(access_codes_router, prefix="/api")
app.include_router(amenities_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "CircleIn API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
