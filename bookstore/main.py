from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pymongo.collation import Collation
from datetime import datetime

from shared.utils import (
    get_db_client, settings, ErrorResponse, HealthResponse, AppException
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware

from bookstore.routers import books, categories, users, orders

# Setup Logging
logger = setup_logging("bookstore-service", settings.LOG_LEVEL)

app = FastAPI(title="Bookstore Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware, service_name="bookstore-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DB_NAME]
    # Indexes
    await app.mongodb.users.create_index("email", unique=True)
    await app.mongodb.categories.create_index(
        "name", unique=True, collation=Collation(locale="en", strength=2)
    )
    await app.mongodb.books.create_index("category")
    await app.mongodb.books.create_index("created_at")
    await app.mongodb.orders.create_index("order_number", unique=True)
    await app.mongodb.orders.create_index([("user_id", 1), ("created_at", -1)])

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Error envelope ---

def error_response(status_code: int, error: str, details=None, headers=None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return error_response(exc.status_code, exc.detail, exc.details, exc.headers)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", jsonable_encoder(exc.errors()))

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        extra={"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        exc_info=exc
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

# --- Routes ---

app.include_router(books.router)
app.include_router(categories.router)
app.include_router(users.router)
app.include_router(orders.router)

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="bookstore-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
