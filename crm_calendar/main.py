import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import models to ensure they're registered with SQLAlchemy Base
from . import models  # noqa: F401
from .database import Base, engine
from .domain.scheduling.errors import ConflictError, InternalError, SchedulingError
from .domain.scheduling.router import router as calendar_router
from .domain.scheduling.schemas import AppointmentResponse, TimeSlotSchema

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
            raise

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="CRM Calendar API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    """Render typed scheduling outcomes with their stable code"""
    logger.info(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")
    body = exc.to_dict()
    if isinstance(exc, ConflictError):
        # Conflict payloads carry what the caller needs to retry without re-querying
        body["details"] = {
            **exc.details,
            "conflicts": [
                AppointmentResponse.from_model(a).model_dump(mode="json") for a in exc.conflicts
            ],
            "suggestions": [
                TimeSlotSchema.from_slot(s).model_dump(mode="json") for s in exc.suggestions
            ],
        }
    return JSONResponse(status_code=exc.http_status, content={"error": body})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Field-level details for malformed requests"""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error for {request.url.path}: {errors}")
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "validation_error",
                "message": "Request validation failed",
                "details": {"errors": errors},
            }
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.exception(f"❌ Unhandled error id={error_id} path={request.url.path}", exc_info=exc)
    error = InternalError(error_id)
    return JSONResponse(status_code=error.http_status, content={"error": error.to_dict()})


# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(calendar_router)


@app.get("/")
def root():
    return {"message": "CRM Calendar API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
